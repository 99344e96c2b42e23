"""룸 기반 세션 레지스트리 모듈.

이 모듈은 시그널링 서버의 룸(방)과 클라이언트 세션(참가자)을 관리합니다.
여러 개의 독립적인 룸을 동시에 관리하며, 각 룸의 멤버 목록을 추적합니다.

주요 기능:
    - 채널 연결 시 클라이언트 ID 발급 (채널 수명 동안 고정)
    - 룸 생성 및 삭제 (첫 입장 시 자동 생성/비어있을 때 자동 삭제)
    - 참가자 입장/퇴장 관리 및 선택적 룸 정원 제한
    - 룸 내 수신자 조회 (다른 룸으로의 라우팅 방지)

Architecture:
    - rooms: Dict[str, Dict[str, ClientSession]] - 룸 ID → 멤버 맵
    - sessions: Dict[str, ClientSession] - 클라이언트 ID → 세션 (연결된 전체 채널)

Classes:
    ClientSession: 채널 하나에 대응하는 클라이언트 세션
    RoomRegistry: 룸 및 멤버십 테이블

Thread Safety:
    - asyncio 단일 이벤트 루프에서만 변경됨 (SignalingRelay가 단일 작성자)
    - 모든 변경 메서드는 동기 함수이므로 중간에 다른 핸들러가 끼어들 수 없음

Examples:
    >>> registry = RoomRegistry()
    >>> alice = registry.register(ws1)
    >>> registry.join(alice, "demo1", "Alice")
    []
    >>> registry.get_room_count("demo1")
    1
"""
import logging
import uuid
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

from ..errors import RoomFullError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ClientSession:
    """채널 하나에 대응하는 클라이언트 세션.

    Attributes:
        client_id (str): 채널 연결 시 발급된 고유 ID (UUID)
        websocket (Any): 소유 채널 (FastAPI WebSocket)
        name (str): 표시 이름 (입장 시에만 변경)
        room_id (Optional[str]): 현재 룸 ID. 입장 전에는 None
    """
    client_id: str
    websocket: Any
    name: str = "Guest"
    room_id: Optional[str] = None

    def to_peer(self) -> dict:
        """``{id, name}`` 형태의 피어 정보."""
        return {"id": self.client_id, "name": self.name}


class RoomRegistry:
    """룸과 클라이언트 세션을 관리하는 멤버십 테이블.

    Attributes:
        rooms (Dict[str, Dict[str, ClientSession]]): 룸 ID를 키로 하는 룸 딕셔너리
            - 각 룸은 client_id를 키로 하는 ClientSession 딕셔너리를 값으로 가짐
        sessions (Dict[str, ClientSession]): 연결된 모든 채널의 세션
        max_room_size (Optional[int]): 룸 최대 인원. None이면 제한 없음
    """

    def __init__(self, max_room_size: Optional[int] = None):
        # room_id -> {client_id: ClientSession}
        self.rooms: Dict[str, Dict[str, ClientSession]] = {}

        # client_id -> ClientSession
        self.sessions: Dict[str, ClientSession] = {}

        self.max_room_size = max_room_size

    def register(self, websocket: Any) -> ClientSession:
        """새 채널에 클라이언트 ID를 발급하고 세션을 등록합니다.

        Args:
            websocket: 클라이언트 채널

        Returns:
            ClientSession: 아직 어떤 룸에도 속하지 않은 세션
        """
        session = ClientSession(client_id=str(uuid.uuid4()), websocket=websocket)
        self.sessions[session.client_id] = session
        logger.debug(f"Client {session.client_id} registered")
        return session

    def unregister(self, session: ClientSession) -> None:
        """채널 종료 시 세션을 제거합니다. 룸에 남아 있으면 먼저 퇴장시킵니다."""
        if session.room_id is not None:
            self.leave(session)
        self.sessions.pop(session.client_id, None)
        logger.debug(f"Client {session.client_id} unregistered")

    def join(self, session: ClientSession, room_id: str, name: str) -> List[ClientSession]:
        """세션을 지정된 룸에 추가합니다.

        룸이 존재하지 않으면 자동으로 생성한 후 세션을 추가합니다.

        Args:
            session: 입장할 세션 (다른 룸에 있으면 호출 전에 leave 필요)
            room_id: 입장할 룸 ID
            name: 표시 이름

        Returns:
            List[ClientSession]: 입장 시점의 다른 멤버 목록

        Raises:
            RoomFullError: max_room_size가 설정되어 있고 룸이 가득 찬 경우
                (이 경우 세션은 등록되지 않음)
        """
        members = self.rooms.get(room_id, {})
        if self.max_room_size is not None and len(members) >= self.max_room_size:
            logger.info(f"Room '{room_id}' is full ({self.max_room_size}), "
                        f"rejecting {session.client_id}")
            raise RoomFullError(room_id, self.max_room_size)

        if room_id not in self.rooms:
            self.rooms[room_id] = {}
            logger.info(f"Room '{room_id}' created")

        others = list(self.rooms[room_id].values())

        session.name = name
        session.room_id = room_id
        self.rooms[room_id][session.client_id] = session

        logger.info(f"Client '{name}' ({session.client_id}) joined room '{room_id}'. "
                    f"Room has {len(self.rooms[room_id])} members")
        return others

    def leave(self, session: ClientSession) -> Optional[str]:
        """세션을 현재 룸에서 제거합니다.

        마지막 멤버가 퇴장하면 룸을 삭제합니다.

        Returns:
            Optional[str]: 세션이 속해 있던 룸 ID. 룸에 없었으면 None
        """
        room_id = session.room_id
        if room_id is None:
            return None

        session.room_id = None
        members = self.rooms.get(room_id)
        if members is None or members.pop(session.client_id, None) is None:
            return None

        if not members:
            del self.rooms[room_id]
            logger.info(f"Room '{room_id}' deleted (empty)")
        else:
            logger.info(f"Client '{session.name}' ({session.client_id}) left room '{room_id}'. "
                        f"Room has {len(members)} members")
        return room_id

    def get_room_peers(self, room_id: str) -> List[ClientSession]:
        """룸의 모든 멤버 목록. 룸이 없으면 빈 리스트."""
        return list(self.rooms.get(room_id, {}).values())

    def get_other_peers(self, room_id: str, exclude_id: str) -> List[ClientSession]:
        """특정 멤버를 제외한 룸의 다른 모든 멤버."""
        return [s for s in self.rooms.get(room_id, {}).values()
                if s.client_id != exclude_id]

    def get_member(self, room_id: str, client_id: str) -> Optional[ClientSession]:
        """룸 안에서만 멤버를 조회합니다.

        다른 룸에 같은 ID가 있더라도 반환하지 않습니다.
        """
        return self.rooms.get(room_id, {}).get(client_id)

    def get_room_count(self, room_id: str) -> int:
        """룸의 현재 멤버 수. 룸이 없으면 0."""
        return len(self.rooms.get(room_id, {}))

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 각 항목은 room_id, peer_count, peers([{id, name}])를 포함
        """
        return [
            {
                "room_id": room_id,
                "peer_count": len(members),
                "peers": [s.to_peer() for s in members.values()]
            }
            for room_id, members in self.rooms.items()
        ]

    @property
    def client_count(self) -> int:
        """연결된 채널 수 (입장 여부 무관)."""
        return len(self.sessions)
