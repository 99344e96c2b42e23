"""피어 링크 상태 머신.

로컬 클라이언트와 원격 참가자 한 명 사이의 세션(Peer Link)을 표현합니다.

State Machine:
    Idle → Negotiating → Connected → Closed
    Negotiating/Connected → Failed (종료 상태)
    Connected → Negotiating (재협상)

허용되지 않는 전이(예: 이미 Negotiating인데 다시 offer)는 InvalidTransition으로
거부됩니다.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from aiortc import MediaStreamTrack, RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..errors import InvalidTransition

logger = logging.getLogger(__name__)


class LinkRole(str, Enum):
    """현재(또는 마지막) 핸드셰이크에서의 역할."""

    OFFERER = "offerer"
    ANSWERER = "answerer"


class LinkState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LinkState.CLOSED, LinkState.FAILED)


TRANSITIONS = {
    LinkState.IDLE: {LinkState.NEGOTIATING, LinkState.CLOSED},
    LinkState.NEGOTIATING: {LinkState.CONNECTED, LinkState.FAILED, LinkState.CLOSED},
    LinkState.CONNECTED: {LinkState.NEGOTIATING, LinkState.FAILED, LinkState.CLOSED},
    LinkState.CLOSED: set(),
    LinkState.FAILED: set(),
}


@dataclass(eq=False)
class PeerLink:
    """원격 참가자 한 명에 대한 세션.

    Attributes:
        peer_id (str): 원격 클라이언트 ID
        peer_name (str): 원격 표시 이름
        role (LinkRole): 현재 핸드셰이크에서의 역할
        pc (Any): 실시간 전송 객체 (aiortc RTCPeerConnection)
        state (LinkState): 현재 상태
        pending_candidates (Deque[RTCIceCandidate]): remote description 적용 전에
            도착한 후보 (도착 순서 유지)
        remote_description_set (bool): 버퍼를 비우고 후보를 바로 적용해도 되는지
        senders (Dict[MediaStreamTrack, Any]): 게시 중인 로컬 트랙 → RTCRtpSender
        remote_tracks (List[MediaStreamTrack]): 수신한 원격 트랙
        renegotiation_pending (bool): Connected가 되면 새 offer를 보내야 함
        tasks (List[asyncio.Task]): 링크 수명에 묶인 백그라운드 태스크
    """
    peer_id: str
    peer_name: str
    role: LinkRole
    pc: Any
    state: LinkState = LinkState.IDLE
    pending_candidates: Deque[RTCIceCandidate] = field(default_factory=deque)
    remote_description_set: bool = False
    senders: Dict[MediaStreamTrack, Any] = field(default_factory=dict)
    remote_tracks: List[MediaStreamTrack] = field(default_factory=list)
    renegotiation_pending: bool = False
    tasks: List[asyncio.Task] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def can_transition(self, target: LinkState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: LinkState) -> None:
        """상태를 바꿉니다.

        Raises:
            InvalidTransition: 허용되지 않는 전이
        """
        if not self.can_transition(target):
            raise InvalidTransition(self.peer_id, self.state, target)
        logger.info(f"[Link] {self.peer_id[:8]} {self.state.value} -> {target.value}")
        self.state = target

    @property
    def awaiting_answer(self) -> bool:
        """로컬 offer를 보내고 answer를 기다리는 중인지."""
        return self.state == LinkState.NEGOTIATING and self.role == LinkRole.OFFERER


# ============================================================
# SDP / candidate 변환
# ============================================================

def description_from_dict(data: Dict[str, Any]) -> RTCSessionDescription:
    """``{"type", "sdp"}`` → RTCSessionDescription."""
    return RTCSessionDescription(sdp=data["sdp"], type=data["type"])


def description_to_dict(description: RTCSessionDescription) -> Dict[str, str]:
    return {"type": description.type, "sdp": description.sdp}


def candidate_from_dict(data: Dict[str, Any]) -> Optional[RTCIceCandidate]:
    """``{"candidate", "sdpMid", "sdpMLineIndex"}`` → RTCIceCandidate.

    빈 candidate 문자열(end-of-candidates)이면 None.
    """
    candidate_str = data.get("candidate") or ""
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]
    if not candidate_str:
        return None

    candidate = candidate_from_sdp(candidate_str)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def candidate_to_dict(candidate: RTCIceCandidate) -> Dict[str, Any]:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }
