"""FastAPI WebRTC Signaling Server with Room Support.

이 모듈은 여러 참가자가 이름 있는 룸에 입장해 서로 풀 메시(full mesh)
WebRTC 세션을 맺을 수 있도록 시그널링 서버를 제공합니다.
미디어는 서버를 거치지 않고 참가자 간에 직접 전달됩니다.

주요 기능:
    - 룸 기반 멤버십 관리 (첫 입장 시 생성, 비면 삭제)
    - offer/answer/ice-candidate 메시지를 같은 룸의 수신자에게 중계
    - 실시간 참가자 입/퇴장 알림 및 룸 단위 채팅 브로드캐스트
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - RoomRegistry: 룸 및 클라이언트 세션 테이블 (인메모리, 재시작 시 소멸)
    - SignalingRelay: 메시지 라우팅 및 브로드캐스트 (단일 작성자)
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
import os
import glob
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from echo_mesh.config import EchoSettings, get_settings
from echo_mesh.signaling import RoomRegistry, SignalingRelay
from echo_mesh.webrtc.config import ice_config
from routes import health_router, signaling_router, init_relay

logger = logging.getLogger(__name__)

SERVICE_NAME = "Echo Mesh Signaling Server"


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = 60) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            filename = os.path.basename(log_file)
            date_str = filename.replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def setup_logging(settings: EchoSettings) -> None:
    """콘솔 + 일자별 파일 로그를 설정합니다."""
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_filename = os.path.join(
        settings.LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log"
    )

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),  # 콘솔 출력
            logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
        ]
    )
    logger.info(f"로깅 초기화 완료: level={settings.LOG_LEVEL}, env={settings.ENV}")


def create_app(settings: Optional[EchoSettings] = None) -> FastAPI:
    """시그널링 서버 애플리케이션을 생성합니다.

    앱마다 새 RoomRegistry/SignalingRelay를 만들고 시그널링 라우터에 연결합니다.

    Args:
        settings: 서버 설정 (None이면 get_settings())

    Returns:
        FastAPI: 설정된 애플리케이션
    """
    settings = settings or get_settings()
    relay = SignalingRelay(
        RoomRegistry(max_room_size=settings.MAX_ROOM_SIZE),
        default_name=settings.DEFAULT_DISPLAY_NAME,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """서버 시작 시 로깅을 설정하고 오래된 로그를 정리합니다. 종료 시 모든 채널을 닫습니다."""
        setup_logging(settings)
        logger.info("시그널링 서버 시작 중...")

        deleted_logs = cleanup_old_logs(settings.LOG_DIR, settings.LOG_RETENTION_DAYS)
        if deleted_logs > 0:
            logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 "
                        f"({settings.LOG_RETENTION_DAYS}일 이상)")

        yield

        logger.info("서버 종료 중...")
        await relay.close_all()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=settings.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 라우터 등록
    app.include_router(health_router)
    app.include_router(signaling_router)

    # WebSocket 시그널링 라우터에 릴레이 인스턴스 전달
    init_relay(relay)

    @app.get("/")
    async def root():
        """서버 상태 확인 엔드포인트 (Health check).

        Returns:
            dict: status, service
        """
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/api/rooms")
    async def get_rooms_api():
        """활성화된 모든 룸의 목록을 조회합니다.

        Returns:
            dict: {"rooms": [{room_id, peer_count, peers}]}
        """
        return {"rooms": relay.registry.get_room_list()}

    @app.get("/api/ice-servers")
    async def get_ice_servers():
        """클라이언트가 사용할 ICE 서버 목록을 제공합니다.

        공개 STUN 서버에 환경 변수로 설정된 STUN/TURN 서버를 더합니다.

        Environment Variables:
            TURN_SERVER_URL / TURN_USERNAME / TURN_CREDENTIAL: TURN 서버 (선택)
            STUN_SERVER_URL: 추가 STUN 서버 (선택)

        Returns:
            list: ICE servers 배열 ``[{"urls": ...}, ...]``
        """
        servers = ice_config.as_dicts()
        if ice_config.has_turn_server:
            logger.info("ICE 서버 제공: STUN + TURN")
        else:
            logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
        return servers

    return app


app = create_app()


def main():
    """echo-server 진입점."""
    settings = get_settings()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
