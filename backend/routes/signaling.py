"""시그널링 WebSocket 라우터.

룸 입장/퇴장, offer/answer/ice-candidate 중계, 채팅 브로드캐스트를 위한
WebSocket 엔드포인트를 제공합니다. 메시지 처리는 SignalingRelay가 담당하고,
이 모듈은 채널 수명(연결 → 수신 루프 → 정리)만 관리합니다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from echo_mesh.config import get_settings
from echo_mesh.signaling import SignalingRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 릴레이 참조 (app.py에서 설정됨)
_relay: Optional[SignalingRelay] = None


def init_relay(relay: SignalingRelay):
    """릴레이 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 릴레이 참조를 설정합니다.

    Args:
        relay: SignalingRelay 인스턴스
    """
    global _relay
    _relay = relay
    logger.info("시그널링 라우터 릴레이 초기화 완료")


def get_relay() -> Optional[SignalingRelay]:
    """현재 릴레이 인스턴스를 반환합니다."""
    return _relay


@router.websocket(get_settings().WS_PATH)
async def websocket_endpoint(websocket: WebSocket):
    """시그널링 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join: 룸 입장 (roomId, name)
        - offer / answer / ice-candidate: 같은 룸의 수신자(to)에게 전달
        - chat: 룸 전체에 브로드캐스트
        - leave: 현재 룸에서 퇴장

    잘못된 메시지는 폐기하고 채널은 유지합니다. 채널에서 발생한 오류는
    이 채널만 정리하며 다른 룸/채널에는 영향을 주지 않습니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _relay is None:
        logger.error("릴레이가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    session = _relay.connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await _relay.handle(session, raw)

    except WebSocketDisconnect:
        logger.info(f"클라이언트 {session.client_id} 연결 끊김")
    except Exception as e:
        logger.error(f"클라이언트 {session.client_id}의 WebSocket 연결 중 오류: {e}")
    finally:
        await _relay.disconnect(session)
