"""시그널링 릴레이 모듈.

룸 멤버 간 세션 수립 메시지(offer/answer/ice-candidate)를 중계하고
룸 단위 이벤트(입장/퇴장/채팅)를 브로드캐스트합니다.

처리 규칙:
    - join: 입장한 채널에 joined(기존 멤버 목록), 나머지 멤버에게 peer-joined
    - offer/answer/ice-candidate: 보낸 사람의 룸 안에서만 수신자를 찾아 전달
      (수신자가 없거나 채널이 닫혀 있으면 조용히 폐기)
    - chat: 보낸 사람을 포함한 룸 전체에 브로드캐스트
    - leave/채널 종료: 남은 멤버에게 peer-left, 빈 룸 삭제

Concurrency:
    모든 핸들러는 하나의 asyncio.Lock 안에서 실행되므로 멤버십 테이블 변경과
    그에 따른 알림 전송이 다른 채널의 처리와 섞이지 않습니다.

See Also:
    registry.py: 룸 및 멤버십 테이블
    routes/signaling.py: WebSocket 엔드포인트
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Union

from starlette.websockets import WebSocketState

from ..errors import MalformedMessage, RoomFullError
from .messages import (
    AddressedMessage,
    AnswerMessage,
    CandidateMessage,
    ChatBroadcast,
    ChatMessage,
    JoinedMessage,
    JoinMessage,
    LeaveMessage,
    OfferMessage,
    PeerInfo,
    PeerJoinedMessage,
    PeerLeftMessage,
    RoomFullMessage,
    parse_client_message,
    relayed,
)
from .registry import ClientSession, RoomRegistry

logger = logging.getLogger(__name__)


class SignalingRelay:
    """룸 멤버십 기반 시그널링 라우터.

    Attributes:
        registry (RoomRegistry): 룸/세션 테이블 (이 객체만 변경함)
        default_name (str): 이름 없이 입장한 클라이언트의 표시 이름
    """

    def __init__(self, registry: Optional[RoomRegistry] = None, default_name: str = "Guest"):
        self.registry = registry or RoomRegistry()
        self.default_name = default_name
        self._lock = asyncio.Lock()

    def connect(self, websocket: Any) -> ClientSession:
        """채널 연결 시 세션을 등록하고 클라이언트 ID를 발급합니다."""
        session = self.registry.register(websocket)
        logger.info(f"클라이언트 {session.client_id} 연결됨")
        return session

    async def disconnect(self, session: ClientSession) -> None:
        """채널 종료 처리. 룸에서 퇴장시키고 세션을 제거합니다."""
        async with self._lock:
            await self.leave(session)
            self.registry.unregister(session)
        logger.info(f"클라이언트 {session.client_id} 정리 완료")

    async def handle(self, session: ClientSession, raw: Union[str, bytes]) -> None:
        """채널에서 받은 원시 메시지 하나를 처리합니다.

        파싱할 수 없는 메시지는 폐기하고 채널은 유지합니다.
        """
        try:
            message = parse_client_message(raw)
        except MalformedMessage as e:
            logger.debug(f"클라이언트 {session.client_id}의 잘못된 메시지 폐기: {e}")
            return

        async with self._lock:
            if isinstance(message, JoinMessage):
                await self.join(session, message.room_id, message.name)
            elif isinstance(message, (OfferMessage, AnswerMessage, CandidateMessage)):
                await self.route(session, message)
            elif isinstance(message, ChatMessage):
                await self.chat(session, message.text)
            elif isinstance(message, LeaveMessage):
                await self.leave(session)

    async def join(self, session: ClientSession, room_id: str, name: Optional[str]) -> Optional[str]:
        """세션을 룸에 입장시킵니다.

        Args:
            session: 입장할 세션
            room_id: 룸 ID
            name: 표시 이름 (비어 있으면 default_name)

        Returns:
            Optional[str]: 입장 성공 시 클라이언트 ID, 정원 초과로 거부되면 None
        """
        if session.room_id is not None:
            # 같은 채널의 재입장: 이전 룸에서 먼저 퇴장
            await self.leave(session)

        name = (name or "").strip() or self.default_name
        try:
            others = self.registry.join(session, room_id, name)
        except RoomFullError as e:
            await self._send(session, RoomFullMessage(limit=e.limit).to_wire())
            return None

        await self._send(session, JoinedMessage(
            client_id=session.client_id,
            room_id=room_id,
            name=name,
            peers=[PeerInfo(**s.to_peer()) for s in others],
        ).to_wire())

        await self.broadcast(
            room_id,
            PeerJoinedMessage(peer=PeerInfo(**session.to_peer())).to_wire(),
            exclude=[session.client_id],
        )
        logger.info(f"클라이언트 {name} ({session.client_id})가 룸 '{room_id}'에 입장함")
        return session.client_id

    async def route(self, session: ClientSession, message: AddressedMessage) -> bool:
        """주소 지정 메시지를 같은 룸의 수신자에게 전달합니다.

        Returns:
            bool: 전달 여부. 수신자가 없거나 닫혀 있으면 False (보낸 쪽에는 알리지 않음)
        """
        if session.room_id is None:
            logger.debug(f"룸 밖의 클라이언트 {session.client_id}가 보낸 {message.type} 폐기")
            return False

        target = self.registry.get_member(session.room_id, message.to)
        if target is None:
            logger.debug(f"{message.type} 수신자 {message.to}가 룸 '{session.room_id}'에 없음, 폐기")
            return False

        return await self._send(target, relayed(message, session.client_id, session.name))

    async def chat(self, session: ClientSession, text: str) -> None:
        """채팅을 보낸 사람을 포함한 룸 전체에 브로드캐스트합니다."""
        if session.room_id is None:
            return
        text = text.strip()
        if not text:
            return
        await self.broadcast(
            session.room_id,
            ChatBroadcast(sender=session.client_id, name=session.name, text=text).to_wire(),
        )

    async def leave(self, session: ClientSession) -> Optional[str]:
        """세션을 현재 룸에서 퇴장시키고 남은 멤버에게 알립니다.

        Returns:
            Optional[str]: 퇴장한 룸 ID. 룸에 없었으면 None
        """
        room_id = self.registry.leave(session)
        if room_id is None:
            return None

        await self.broadcast(room_id, PeerLeftMessage(id=session.client_id).to_wire())
        logger.info(f"클라이언트 {session.name} ({session.client_id})가 룸 '{room_id}'에서 퇴장함")
        return room_id

    async def broadcast(self, room_id: str, message: Dict[str, Any], exclude: Iterable[str] = ()) -> None:
        """룸의 모든 멤버에게 메시지를 전송합니다.

        Args:
            room_id: 대상 룸 ID
            message: 전송할 메시지 딕셔너리
            exclude: 제외할 client_id 목록
        """
        exclude = set(exclude)
        for member in self.registry.get_room_peers(room_id):
            if member.client_id not in exclude:
                await self._send(member, message)

    async def close_all(self) -> None:
        """서버 종료 시 모든 채널을 닫습니다."""
        for session in list(self.registry.sessions.values()):
            try:
                await session.websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"클라이언트 {session.client_id} 채널 종료 중 오류: {e}")

    async def _send(self, session: ClientSession, message: Dict[str, Any]) -> bool:
        """열려 있는 채널에만 전송합니다. 실패는 기록만 하고 전파하지 않습니다."""
        websocket = session.websocket
        if websocket.client_state != WebSocketState.CONNECTED:
            logger.debug(f"클라이언트 {session.client_id} 채널이 닫혀 있어 {message.get('type')} 폐기")
            return False
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"클라이언트 {session.client_id}에 {message.get('type')} 전송 실패: {e}")
            return False
