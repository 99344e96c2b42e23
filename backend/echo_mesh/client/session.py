"""룸 클라이언트 세션 모듈.

시그널링 채널(WebSocket) 하나와 그 위에서 동작하는 PeerSessionManager,
MediaTrackController를 묶어 하나의 룸 참가 세션을 구성합니다.

처리 흐름:
    1. 로컬 미디어 획득 (실패하면 채널을 열지 않고 MediaPermissionDenied)
    2. 채널 연결 후 join 전송
    3. 수신 메시지를 한 번에 하나씩 처리 (명단/채팅 갱신 → 피어 링크로 전달)
    4. leave 또는 채널 종료 시 모든 링크 정리 및 캡처 해제

Examples:
    >>> client = EchoClient("ws://localhost:3000/ws", "demo1", "Alice")
    >>> await client.start()
    >>> receive_task = asyncio.create_task(client.receive_loop())
    >>> await client.send_chat("hello")
    >>> await client.leave()
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import websockets

from ..errors import MediaPermissionDenied
from ..webrtc.media import CaptureProvider, MediaTrackController
from ..webrtc.peer_manager import PeerSessionManager, create_peer_connection

logger = logging.getLogger(__name__)


class ClientStatus(str, Enum):
    """사용자에게 보여줄 거친 단위의 상태 (피어별 실패는 반영하지 않음)."""

    IDLE = "idle"
    CONNECTING = "connecting"
    JOINED = "joined"
    ROOM_FULL = "room-full"
    DISCONNECTED = "disconnected"


@dataclass
class ChatEntry:
    """채팅 로그 한 줄."""
    sender: str
    name: str
    text: str
    ts: Optional[int] = None


class EchoClient:
    """룸 참가 클라이언트.

    Attributes:
        url (str): 시그널링 서버 WebSocket URL
        room_id (str): 입장할 룸 ID
        name (str): 표시 이름
        status (ClientStatus): 현재 상태
        client_id (Optional[str]): joined로 받은 로컬 클라이언트 ID
        roster (Dict[str, str]): 원격 참가자 ID → 표시 이름
        chat_log (List[ChatEntry]): 수신한 채팅 (보낸 채팅도 서버를 거쳐 들어옴)
        manager (PeerSessionManager): 피어 링크 관리자
        media (MediaTrackController): 로컬 트랙 관리자
    """

    def __init__(
        self,
        url: str,
        room_id: str,
        name: Optional[str] = None,
        capture: Optional[CaptureProvider] = None,
        connector: Callable[..., Any] = websockets.connect,
        pc_factory: Callable[[], Any] = create_peer_connection,
        on_chat: Optional[Callable[[ChatEntry], None]] = None,
    ):
        self.url = url
        self.room_id = room_id
        self.name = name or ""
        self.connector = connector
        self.on_chat = on_chat

        self.status = ClientStatus.IDLE
        self.client_id: Optional[str] = None
        self.roster: Dict[str, str] = {}
        self.chat_log: List[ChatEntry] = []
        self.websocket = None

        self.manager = PeerSessionManager(send=self.send_json, pc_factory=pc_factory)
        self.media = MediaTrackController(self.manager, capture=capture)
        self._closed = False

    async def start(self) -> None:
        """로컬 미디어를 획득하고 채널에 연결해 join을 보냅니다.

        Raises:
            MediaPermissionDenied: 캡처 장치를 열 수 없는 경우 (채널을 열지 않음)
        """
        self.status = ClientStatus.CONNECTING
        try:
            await self.media.start()
        except MediaPermissionDenied as e:
            logger.error(f"[Client] 미디어 장치 획득 실패, 세션을 시작하지 않음: {e}")
            await self.media.release()
            self.status = ClientStatus.DISCONNECTED
            raise

        self.websocket = await self.connector(self.url)
        logger.info(f"[Client] {self.url} 연결됨, 룸 '{self.room_id}' 입장 요청")
        await self.send_json({"type": "join", "roomId": self.room_id, "name": self.name})

    async def run(self) -> None:
        """start 후 채널이 닫힐 때까지 수신합니다."""
        await self.start()
        await self.receive_loop()

    async def receive_loop(self) -> None:
        """채널이 닫힐 때까지 메시지를 순서대로 하나씩 처리합니다."""
        try:
            async for raw in self.websocket:
                await self.handle_raw(raw)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"[Client] 채널 종료: {e}")
        finally:
            await self._teardown()

    async def handle_raw(self, raw) -> None:
        try:
            message = json.loads(raw)
        except ValueError as e:
            logger.debug(f"[Client] 잘못된 메시지 폐기: {e}")
            return
        if not isinstance(message, dict):
            logger.debug("[Client] 객체가 아닌 메시지 폐기")
            return
        await self.handle_message(message)

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """서버 메시지 하나를 처리합니다.

        명단/채팅/상태를 갱신한 뒤 링크 관련 메시지는 PeerSessionManager로 넘깁니다.
        """
        message_type = message.get("type")

        if message_type == "joined":
            self.status = ClientStatus.JOINED
            self.client_id = message.get("clientId")
            self.name = message.get("name") or self.name
            self.roster = {p["id"]: p.get("name", "") for p in message.get("peers") or []}
            logger.info(f"[Client] 룸 '{message.get('roomId')}' 입장 완료, 기존 참가자 {len(self.roster)}명")

        elif message_type == "peer-joined":
            peer = message.get("peer") or {}
            if peer.get("id"):
                self.roster[peer["id"]] = peer.get("name", "")

        elif message_type == "peer-left":
            self.roster.pop(message.get("id"), None)

        elif message_type == "chat":
            entry = ChatEntry(
                sender=message.get("from", ""),
                name=message.get("name", ""),
                text=message.get("text", ""),
                ts=message.get("ts"),
            )
            self.chat_log.append(entry)
            if self.on_chat:
                self.on_chat(entry)
            return

        elif message_type == "room-full":
            logger.warning(f"[Client] 룸 '{self.room_id}' 정원 초과 (limit={message.get('limit')})")
            self.status = ClientStatus.ROOM_FULL
            await self._close_channel()
            return

        await self.manager.handle_message(message)

    async def send_chat(self, text: str) -> None:
        """채팅 전송. 로컬 로그에는 서버가 돌려준 메시지만 추가됩니다."""
        text = text.strip()
        if text:
            await self.send_json({"type": "chat", "text": text})

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.websocket is None:
            return
        try:
            await self.websocket.send(json.dumps(message))
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"[Client] 채널이 닫혀 {message.get('type')} 전송 생략")

    async def leave(self) -> None:
        """룸에서 나가고 채널을 닫은 뒤 모든 링크와 캡처 자원을 정리합니다."""
        if self.websocket is not None and not self._closed:
            await self.send_json({"type": "leave"})
        await self._close_channel()
        await self._teardown()

    async def _close_channel(self) -> None:
        if self.websocket is None or self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"[Client] 채널 종료 중 오류: {e}")

    async def _teardown(self) -> None:
        await self.manager.close_all()
        await self.media.release()
        self.roster.clear()
        self._closed = True
        if self.status != ClientStatus.ROOM_FULL:
            self.status = ClientStatus.DISCONNECTED
        logger.info(f"[Client] 세션 정리 완료 ({self.status.value})")
