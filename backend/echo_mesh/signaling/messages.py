"""시그널링 메시지 스키마.

WebSocket 채널로 주고받는 JSON 메시지를 pydantic 모델로 정의합니다.
모든 메시지는 ``type`` 필드로 구분되는 태그드 유니온입니다.

클라이언트 → 서버:
    join, leave, offer, answer, ice-candidate, chat

서버 → 클라이언트:
    joined, peer-joined, peer-left, offer/answer/ice-candidate (중계),
    chat (브로드캐스트), room-full

Examples:
    >>> message = parse_client_message('{"type": "join", "roomId": "demo1", "name": "Alice"}')
    >>> message.room_id
    'demo1'
"""

import json
import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import MalformedMessage


class MessageType(str, Enum):
    """와이어 상의 ``type`` 값."""

    JOIN = "join"
    JOINED = "joined"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "ice-candidate"
    CHAT = "chat"
    ROOM_FULL = "room-full"
    LEAVE = "leave"


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """전송용 딕셔너리 (alias 적용)."""
        return self.model_dump(by_alias=True, mode="json")


# ============================================================
# 클라이언트 → 서버
# ============================================================

class JoinMessage(_Message):
    type: Literal["join"]
    room_id: str = Field(alias="roomId", min_length=1)
    name: Optional[str] = None


class LeaveMessage(_Message):
    type: Literal["leave"]


class OfferMessage(_Message):
    type: Literal["offer"]
    to: str
    sdp: Dict[str, Any]


class AnswerMessage(_Message):
    type: Literal["answer"]
    to: str
    sdp: Dict[str, Any]


class CandidateMessage(_Message):
    type: Literal["ice-candidate"]
    to: str
    candidate: Optional[Dict[str, Any]] = None


class ChatMessage(_Message):
    type: Literal["chat"]
    text: str


ClientMessage = Annotated[
    Union[JoinMessage, LeaveMessage, OfferMessage, AnswerMessage, CandidateMessage, ChatMessage],
    Field(discriminator="type"),
]

# 주소 지정 메시지 (수신자 1명에게 중계)
AddressedMessage = Union[OfferMessage, AnswerMessage, CandidateMessage]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """클라이언트가 보낸 원시 페이로드를 메시지 모델로 변환합니다.

    Args:
        raw: WebSocket 텍스트/바이너리 프레임

    Returns:
        ClientMessage: 검증된 메시지 모델

    Raises:
        MalformedMessage: JSON 파싱 실패(과도한 중첩 포함), 알 수 없는 type, 필수 필드 누락
    """
    try:
        data = json.loads(raw)
        return _client_message_adapter.validate_python(data)
    except (ValueError, ValidationError, RecursionError) as e:
        raise MalformedMessage(str(e)) from e


# ============================================================
# 서버 → 클라이언트
# ============================================================

class PeerInfo(_Message):
    id: str
    name: str


class JoinedMessage(_Message):
    type: Literal["joined"] = "joined"
    client_id: str = Field(alias="clientId")
    room_id: str = Field(alias="roomId")
    name: str
    peers: List[PeerInfo] = Field(default_factory=list)


class PeerJoinedMessage(_Message):
    type: Literal["peer-joined"] = "peer-joined"
    peer: PeerInfo


class PeerLeftMessage(_Message):
    type: Literal["peer-left"] = "peer-left"
    id: str


class ChatBroadcast(_Message):
    type: Literal["chat"] = "chat"
    sender: str = Field(alias="from")
    name: str
    text: str
    ts: int = Field(default_factory=lambda: int(time.time() * 1000))


class RoomFullMessage(_Message):
    type: Literal["room-full"] = "room-full"
    limit: int


def relayed(message: AddressedMessage, sender_id: str, sender_name: str) -> Dict[str, Any]:
    """수신자에게 전달할 중계 메시지를 만듭니다.

    라우팅 전용 필드 ``to``는 제거하고 ``from``/``name``을 붙입니다.
    """
    data = message.model_dump(by_alias=True, mode="json", exclude={"to"})
    data["from"] = sender_id
    data["name"] = sender_name
    return data
