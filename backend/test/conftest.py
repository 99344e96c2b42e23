"""테스트 공용 픽스처와 가짜 전송 객체.

PeerSessionManager가 사용하는 aiortc RTCPeerConnection 표면과
시그널링 채널(서버 측 WebSocket, 클라이언트 측 websockets 연결)을 흉내 냅니다.
"""

import asyncio
import inspect
import json
from typing import Any, Dict, List, Optional

import numpy as np
import pytest
from aiortc import MediaStreamTrack, RTCSessionDescription
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosedOK

from echo_mesh.errors import MediaPermissionDenied
from echo_mesh.webrtc.media import CaptureProvider
from echo_mesh.webrtc.peer_manager import PeerSessionManager


# ============================================================
# 서버 측 채널
# ============================================================

class FakeWebSocket:
    """SignalingRelay가 쓰는 FastAPI WebSocket 표면."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None

    async def send_json(self, message):
        self.sent.append(message)

    async def close(self, code: int = 1000):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]


# ============================================================
# 실시간 전송 객체 (RTCPeerConnection)
# ============================================================

class FakeSender:
    def __init__(self, track):
        self.track = track


class FakeTransceiver:
    def __init__(self, sender: FakeSender):
        self.sender = sender
        self.direction = "sendrecv"


class FakePeerConnection:
    """호출 순서를 기록하는 RTCPeerConnection 대역.

    Attributes:
        calls (List[tuple]): ("remote", type) / ("candidate", port) 등 호출 기록
        candidate_before_remote (bool): remote description 없이 후보가 적용된 적이 있는지
        fail_remote (bool): True면 setRemoteDescription이 실패
        fail_candidate_ports (set): 이 포트의 후보는 addIceCandidate가 실패
    """

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.calls: List[tuple] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.connectionState = "new"
        self.transceivers: List[FakeTransceiver] = []
        self.candidates: List[Any] = []
        self.candidate_before_remote = False
        self.fail_remote = False
        self.fail_candidate_ports = set()
        self._offers = 0

    def on(self, event, f=None):
        def register(handler):
            self.handlers[event] = handler
            return handler
        return register(f) if f else register

    async def emit(self, event, *args):
        result = self.handlers[event](*args)
        if inspect.isawaitable(result):
            await result

    async def set_connection_state(self, state: str):
        self.connectionState = state
        await self.emit("connectionstatechange")

    async def createOffer(self):
        self._offers += 1
        return RTCSessionDescription(sdp=f"offer-{self._offers}", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="answer", type="answer")

    async def setLocalDescription(self, description):
        self.calls.append(("local", description.type))
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if self.fail_remote:
            raise ValueError("bad sdp")
        self.calls.append(("remote", description.type))
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        if candidate.port in self.fail_candidate_ports:
            raise ValueError("bad candidate")
        if self.remoteDescription is None:
            self.candidate_before_remote = True
        self.calls.append(("candidate", candidate.port))
        self.candidates.append(candidate)

    def addTrack(self, track):
        sender = FakeSender(track)
        self.transceivers.append(FakeTransceiver(sender))
        return sender

    def getTransceivers(self):
        return list(self.transceivers)

    async def close(self):
        if self.connectionState == "closed":
            return
        self.connectionState = "closed"
        if "connectionstatechange" in self.handlers:
            await self.emit("connectionstatechange")


class PeerConnectionFactory:
    """생성한 FakePeerConnection을 순서대로 보관하는 팩토리."""

    def __init__(self):
        self.created: List[FakePeerConnection] = []

    def __call__(self) -> FakePeerConnection:
        pc = FakePeerConnection()
        self.created.append(pc)
        return pc


def candidate(port: int, mid: str = "0") -> Dict[str, Any]:
    """와이어 형식의 host candidate."""
    return {
        "candidate": f"candidate:1 1 udp 2130706431 10.0.0.1 {port} typ host",
        "sdpMid": mid,
        "sdpMLineIndex": 0,
    }


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


# ============================================================
# 미디어
# ============================================================

def tone_frame(amplitude: float, samples: int = 960, pts: int = 0) -> AudioFrame:
    """s16 모노 프레임. amplitude는 0.0 ~ 1.0."""
    data = np.full((1, samples), int(amplitude * 32767), dtype=np.int16)
    frame = AudioFrame.from_ndarray(data, format="s16", layout="mono")
    frame.sample_rate = 48000
    frame.pts = pts
    return frame


class FakeTrack(MediaStreamTrack):
    """미리 정한 프레임을 내보낸 뒤 종료되는 트랙."""

    def __init__(self, kind: str = "audio", frames=None):
        super().__init__()
        self.kind = kind
        self.frames = list(frames or [])

    async def recv(self):
        if not self.frames:
            self.stop()
            raise MediaStreamError
        return self.frames.pop(0)


class FakeCapture(CaptureProvider):
    def __init__(self, deny_user: bool = False, deny_display: bool = False):
        self.deny_user = deny_user
        self.deny_display = deny_display
        self.user_tracks: List[FakeTrack] = []
        self.display_tracks: List[FakeTrack] = []

    async def open_user_media(self):
        if self.deny_user:
            raise MediaPermissionDenied("camera blocked")
        self.user_tracks = [FakeTrack("audio"), FakeTrack("video")]
        return list(self.user_tracks)

    async def open_display_media(self):
        if self.deny_display:
            raise MediaPermissionDenied("screen blocked")
        self.display_tracks = [FakeTrack("video")]
        return list(self.display_tracks)


# ============================================================
# 클라이언트 측 채널 (websockets)
# ============================================================

class FakeClientChannel:
    """websockets 클라이언트 연결 대역. feed()로 서버 메시지를 넣습니다."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def feed(self, message):
        if message is not None and not isinstance(message, str):
            message = json.dumps(message)
        self.incoming.put_nowait(message)

    async def send(self, data: str):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]


# ============================================================
# 픽스처
# ============================================================

@pytest.fixture
def outbox() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def pc_factory() -> PeerConnectionFactory:
    return PeerConnectionFactory()


@pytest.fixture
def manager(outbox, pc_factory) -> PeerSessionManager:
    async def send(message):
        outbox.append(message)

    manager = PeerSessionManager(send=send, pc_factory=pc_factory, use_relay=False, detect_speakers=False)
    manager.local_id = "me"
    return manager
