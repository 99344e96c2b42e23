"""WebRTC 피어 세션 관리 모듈.

이 모듈은 클라이언트 측에서 원격 참가자마다 하나의 Peer Link를 만들고,
중계 서버를 통해 들어오는 offer/answer/ice-candidate 메시지를 상태 머신
전이로 바꾸어 풀 메시(full mesh) 연결을 수립합니다.

주요 기능:
    - 역할 배정: 새로 들어온 참가자가 기존 멤버 전원에게 Offerer,
      기존 멤버는 Answerer로 대기 (동시 offer(glare) 방지)
    - remote description 적용 전 도착한 ICE candidate 버퍼링 및 순서 보장
    - 로컬 트랙 추가/제거 시 재협상 (항상 로컬이 Offerer)
    - 재협상 glare 시 양쪽 모두 새 연결로 재시작 (ID가 큰 쪽이 Offerer)
    - 전송 계층 실패/종료, peer-left 수신 시 즉시 정리 (재시도 없음)

WebRTC Flow (Offerer):
    1. joined 수신 → 기존 멤버마다 링크 생성 (OFFERER)
    2. createOffer / setLocalDescription → Negotiating, offer 전송
    3. answer 수신 → setRemoteDescription, 버퍼된 후보 적용 → Connected

WebRTC Flow (Answerer):
    1. peer-joined 수신 → 링크 생성 (ANSWERER, Idle), offer를 기다림
    2. offer 수신 → setRemoteDescription, 버퍼된 후보 적용
    3. createAnswer / setLocalDescription, answer 전송 → Connected

Examples:
    >>> manager = PeerSessionManager(send=channel_send)
    >>> await manager.handle_message({"type": "joined", "clientId": "a", "peers": [...]})
    >>> await manager.close_all()

See Also:
    link.py: Peer Link 상태 머신
    media.py: 로컬 트랙 게시/해제
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiortc import MediaStreamTrack, RTCConfiguration, RTCPeerConnection
from aiortc.contrib.media import MediaRelay

from ..errors import InvalidTransition
from .config import ice_config
from .link import (
    LinkRole,
    LinkState,
    PeerLink,
    candidate_from_dict,
    candidate_to_dict,
    description_from_dict,
    description_to_dict,
)
from .tracks import ActiveSpeakerMonitor

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]

# 전송 계층 상태 중 링크를 끝내는 값
TERMINAL_CONNECTION_STATES = ("failed", "disconnected", "closed")


@dataclass
class LinkEvent:
    """Peer Link에서 UI/미디어 계층으로 보내는 알림.

    Attributes:
        kind (str): "state" | "track" | "speaking" | "closed"
        peer_id (str): 원격 클라이언트 ID
        state (Optional[LinkState]): 상태 관련 이벤트의 상태
        track (Optional[MediaStreamTrack]): 수신한 원격 트랙의 구독 트랙. 소비자가 끝까지 읽어야 함
        speaking (Optional[bool]): 발화 상태
    """
    kind: str
    peer_id: str
    state: Optional[LinkState] = None
    track: Optional[MediaStreamTrack] = None
    speaking: Optional[bool] = None


def create_peer_connection() -> RTCPeerConnection:
    """설정된 ICE 서버로 RTCPeerConnection을 생성합니다."""
    config = RTCConfiguration(iceServers=ice_config.ice_servers())
    return RTCPeerConnection(configuration=config)


class PeerSessionManager:
    """원격 참가자별 Peer Link를 관리하는 클래스.

    Attributes:
        local_id (Optional[str]): joined로 받은 로컬 클라이언트 ID
        links (Dict[str, PeerLink]): 원격 ID → Peer Link (원격 ID당 최대 1개)
        local_tracks (List[MediaStreamTrack]): 새 링크에 붙일 로컬 트랙
        events (asyncio.Queue): LinkEvent 알림 큐
        detect_speakers (bool): 원격 오디오 트랙 발화자 감지 여부
    """

    def __init__(
        self,
        send: SendFunc,
        pc_factory: Callable[[], Any] = create_peer_connection,
        use_relay: bool = True,
        detect_speakers: bool = True,
    ):
        self.send = send
        self.pc_factory = pc_factory
        self.local_id: Optional[str] = None
        self.links: Dict[str, PeerLink] = {}
        self.local_tracks: List[MediaStreamTrack] = []
        self.events: asyncio.Queue = asyncio.Queue()
        self.detect_speakers = detect_speakers

        # 캡처 트랙 하나를 여러 링크가 나눠 쓰기 위한 릴레이
        self.relay: Optional[MediaRelay] = MediaRelay() if use_relay else None

    # ------------------------------------------------------------
    # 메시지 디스패치
    # ------------------------------------------------------------

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """중계 서버에서 받은 메시지 하나를 처리합니다.

        링크와 관계없는 메시지(chat 등)는 무시합니다.
        """
        message_type = message.get("type")

        if message_type == "joined":
            self.local_id = message.get("clientId")
            for peer in message.get("peers") or []:
                await self.start_offer(peer["id"], peer.get("name", "Participant"))

        elif message_type == "peer-joined":
            peer = message.get("peer") or {}
            if peer.get("id"):
                await self.expect_offer(peer["id"], peer.get("name", "Participant"))

        elif message_type == "peer-left":
            if message.get("id"):
                await self.close_link(message["id"])

        elif message_type == "offer":
            await self.handle_offer(message.get("from"), message.get("name"), message.get("sdp"))

        elif message_type == "answer":
            await self.handle_answer(message.get("from"), message.get("sdp"))

        elif message_type == "ice-candidate":
            await self.handle_candidate(message.get("from"), message.get("candidate"))

    # ------------------------------------------------------------
    # 링크 생성
    # ------------------------------------------------------------

    def _create_link(self, peer_id: str, peer_name: str, role: LinkRole) -> Optional[PeerLink]:
        """링크를 만들거나 이미 있는 링크를 반환합니다."""
        if not peer_id or peer_id == self.local_id:
            return None
        if peer_id in self.links:
            return self.links[peer_id]

        pc = self.pc_factory()
        link = PeerLink(peer_id=peer_id, peer_name=peer_name, role=role, pc=pc)
        self.links[peer_id] = link

        for track in self.local_tracks:
            link.senders[track] = pc.addTrack(self.subscribe(track))

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate:
                await self._send({
                    "type": "ice-candidate",
                    "to": peer_id,
                    "candidate": candidate_to_dict(candidate),
                })

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            state = pc.connectionState
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 상태: {state}")
            if state in TERMINAL_CONNECTION_STATES and self.links.get(peer_id) is link:
                await self.close_link(peer_id, failed=state != "closed")

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            current = self.links.get(peer_id)
            if current is not link:
                return
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} {track.kind} 트랙 수신")
            link.remote_tracks.append(track)
            # UI 소비자용 구독 트랙 (원격 트랙 자체는 릴레이만 읽음)
            self.events.put_nowait(LinkEvent("track", peer_id, track=self.subscribe(track)))
            if track.kind == "audio" and self.detect_speakers:
                monitor = ActiveSpeakerMonitor(peer_id, self.notify_speaking)
                link.tasks.append(asyncio.create_task(monitor.run(self.subscribe(track))))

        logger.info(f"[WebRTC] 링크 생성: peer={peer_id[:8]} ({peer_name}), role={role.value}")
        return link

    async def start_offer(self, peer_id: str, peer_name: str) -> Optional[PeerLink]:
        """새로 입장한 쪽: Offerer 링크를 만들고 offer를 보냅니다."""
        link = self._create_link(peer_id, peer_name, LinkRole.OFFERER)
        if link is None or link.state != LinkState.IDLE:
            return link
        await self._negotiate(link)
        return link

    async def expect_offer(self, peer_id: str, peer_name: str) -> Optional[PeerLink]:
        """기존 멤버 쪽: Answerer 링크를 만들고 offer를 기다립니다 (먼저 보내지 않음)."""
        return self._create_link(peer_id, peer_name, LinkRole.ANSWERER)

    # ------------------------------------------------------------
    # offer / answer / candidate
    # ------------------------------------------------------------

    async def _negotiate(self, link: PeerLink) -> None:
        """로컬 description을 만들어 offer로 보냅니다 (초기 협상 및 재협상 공통)."""
        failed = False
        async with link.lock:
            if not self._is_live(link):
                return
            if link.state not in (LinkState.IDLE, LinkState.CONNECTED):
                # 이미 협상 중: Connected가 된 뒤 다시 보냄
                link.renegotiation_pending = True
                return

            link.role = LinkRole.OFFERER
            link.renegotiation_pending = False
            self._set_state(link, LinkState.NEGOTIATING)
            try:
                offer = await link.pc.createOffer()
                await link.pc.setLocalDescription(offer)
            except Exception as e:
                logger.error(f"[WebRTC] 피어 {link.peer_id[:8]} offer 생성 실패: {e}")
                failed = True
            else:
                if self._is_live(link):
                    await self._send({
                        "type": "offer",
                        "to": link.peer_id,
                        "sdp": description_to_dict(link.pc.localDescription),
                    })
                    logger.info(f"[WebRTC] 피어 {link.peer_id[:8]}에게 offer 전송")

        if failed:
            await self._fail(link)

    async def handle_offer(self, peer_id: Optional[str], peer_name: Optional[str],
                           sdp: Optional[Dict[str, Any]]) -> None:
        """원격 offer 처리 (초기 offer와 재협상 offer 동일)."""
        if not peer_id or not sdp:
            return
        link = self._create_link(peer_id, peer_name or "Participant", LinkRole.ANSWERER)
        if link is None:
            return
        if peer_name:
            link.peer_name = peer_name

        failed = False
        glare = False
        async with link.lock:
            if not self._is_live(link):
                return
            if link.awaiting_answer:
                logger.warning(f"[WebRTC] 피어 {peer_id[:8]}: 로컬 offer 대기 중 원격 offer 수신, 거부")
                glare = True
            elif not link.can_transition(LinkState.NEGOTIATING):
                logger.warning(f"[WebRTC] 피어 {peer_id[:8]}: {link.state.value} 상태에서 offer 거부")
                return
            else:
                link.role = LinkRole.ANSWERER
                self._set_state(link, LinkState.NEGOTIATING)
                try:
                    await link.pc.setRemoteDescription(description_from_dict(sdp))
                    await self._flush_candidates(link)
                    answer = await link.pc.createAnswer()
                    await link.pc.setLocalDescription(answer)
                except Exception as e:
                    logger.error(f"[WebRTC] 피어 {peer_id[:8]} offer 처리 실패: {e}")
                    failed = True
                else:
                    if not self._is_live(link):
                        return
                    await self._send({
                        "type": "answer",
                        "to": peer_id,
                        "sdp": description_to_dict(link.pc.localDescription),
                    })
                    self._set_state(link, LinkState.CONNECTED)
                    logger.info(f"[WebRTC] 피어 {peer_id[:8]}에게 answer 전송")

        if glare:
            await self._restart_link(link)
            return
        if failed:
            await self._fail(link)
            return
        await self._resume_pending(link)

    async def _restart_link(self, link: PeerLink) -> None:
        """양쪽이 동시에 재협상한 링크(glare)를 새 연결로 다시 맺습니다.

        aiortc는 rollback을 지원하지 않으므로 양쪽 모두 기존 연결을 닫습니다.
        ID가 큰 쪽이 새 링크의 Offerer가 되고, 작은 쪽은 Answerer로 기다렸다가
        연결된 뒤 보류된 재협상을 보냅니다. 두 쪽 모두 상대의 offer를 받는 시점에
        glare를 감지하고, 채널은 보낸 순서를 지키므로 새 offer는 항상 재시작 뒤에 도착합니다.
        """
        if not self._is_live(link) or not self.local_id:
            return
        peer_id, peer_name = link.peer_id, link.peer_name
        await self.close_link(peer_id)

        if self.local_id > peer_id:
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} glare: 새 연결로 offer 재전송")
            await self.start_offer(peer_id, peer_name)
        else:
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} glare: 새 연결로 상대 offer 대기")
            fresh = await self.expect_offer(peer_id, peer_name)
            if fresh is not None:
                fresh.renegotiation_pending = True

    async def handle_answer(self, peer_id: Optional[str], sdp: Optional[Dict[str, Any]]) -> None:
        """원격 answer 처리. 로컬 offer가 없는 링크의 answer는 거부합니다."""
        link = self.links.get(peer_id) if peer_id else None
        if link is None or not sdp:
            return

        failed = False
        async with link.lock:
            if not self._is_live(link):
                return
            if not link.awaiting_answer:
                logger.warning(f"[WebRTC] 피어 {peer_id[:8]}: 보낸 offer가 없는데 answer 수신, 거부")
                return
            try:
                await link.pc.setRemoteDescription(description_from_dict(sdp))
                await self._flush_candidates(link)
            except Exception as e:
                logger.error(f"[WebRTC] 피어 {peer_id[:8]} answer 적용 실패: {e}")
                failed = True
            else:
                if not self._is_live(link):
                    return
                self._set_state(link, LinkState.CONNECTED)

        if failed:
            await self._fail(link)
            return
        await self._resume_pending(link)

    async def handle_candidate(self, peer_id: Optional[str], data: Optional[Dict[str, Any]]) -> None:
        """원격 ICE candidate 처리.

        remote description이 아직 없으면 버퍼에 넣고, 있으면 바로 적용합니다.
        """
        link = self.links.get(peer_id) if peer_id else None
        if link is None or not data:
            return

        try:
            candidate = candidate_from_dict(data)
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} candidate 파싱 실패: {e}")
            return
        if candidate is None:
            return

        if not link.remote_description_set:
            link.pending_candidates.append(candidate)
            logger.debug(f"[WebRTC] 피어 {peer_id[:8]} candidate 버퍼링 ({len(link.pending_candidates)}개)")
            return

        await self._apply_candidate(link, candidate)

    async def _flush_candidates(self, link: PeerLink) -> None:
        """버퍼된 후보를 도착 순서대로 적용합니다.

        버퍼가 완전히 빈 뒤에야 remote_description_set을 켜므로, 적용 도중 도착한
        후보도 뒤에 줄을 섭니다.
        """
        while link.pending_candidates:
            await self._apply_candidate(link, link.pending_candidates.popleft())
        link.remote_description_set = True

    async def _apply_candidate(self, link: PeerLink, candidate) -> None:
        try:
            await link.pc.addIceCandidate(candidate)
        except Exception as e:
            # 연결 품질 저하로만 이어짐 (링크는 유지)
            logger.warning(f"[WebRTC] 피어 {link.peer_id[:8]} ICE candidate 적용 실패: {e}")

    async def _resume_pending(self, link: PeerLink) -> None:
        """협상 중에 미뤄둔 재협상을 실행합니다."""
        if link.renegotiation_pending and link.state == LinkState.CONNECTED:
            logger.info(f"[WebRTC] 피어 {link.peer_id[:8]} 보류된 재협상 실행")
            await self._negotiate(link)

    # ------------------------------------------------------------
    # 로컬 트랙 게시 / 재협상
    # ------------------------------------------------------------

    async def renegotiate(self, link: PeerLink) -> None:
        """로컬 트랙 변경 후 새 offer를 보냅니다.

        Connected가 아니면(Idle/Negotiating) 보류했다가 Connected가 되면 보냅니다.
        """
        if link.state == LinkState.CONNECTED:
            await self._negotiate(link)
        elif not link.state.is_terminal:
            link.renegotiation_pending = True

    async def publish_track(self, track: MediaStreamTrack) -> None:
        """로컬 트랙을 모든 활성 링크에 붙이고 재협상합니다."""
        if track in self.local_tracks:
            return
        self.local_tracks.append(track)
        for link in list(self.links.values()):
            if link.state.is_terminal:
                continue
            link.senders[track] = link.pc.addTrack(self.subscribe(track))
            await self.renegotiate(link)

    async def unpublish_track(self, track: MediaStreamTrack) -> None:
        """로컬 트랙을 모든 링크에서 떼어내고 재협상합니다."""
        if track in self.local_tracks:
            self.local_tracks.remove(track)
        for link in list(self.links.values()):
            sender = link.senders.pop(track, None)
            if sender is None or link.state.is_terminal:
                continue
            if sender.track is not None:
                # 링크별 릴레이 구독만 멈춤 (캡처 트랙은 호출자가 정리)
                sender.track.stop()
            for transceiver in link.pc.getTransceivers():
                if transceiver.sender is sender:
                    transceiver.direction = "recvonly"
            await self.renegotiate(link)

    # ------------------------------------------------------------
    # 정리
    # ------------------------------------------------------------

    async def close_link(self, peer_id: str, failed: bool = False) -> None:
        """링크를 제거하고 전송 객체를 닫습니다. 재시도는 하지 않습니다.

        Args:
            peer_id: 원격 클라이언트 ID
            failed: 전송 실패/끊김으로 인한 종료 여부. Negotiating/Connected에서만
                Failed가 되고, 그 외에는 Closed
        """
        link = self.links.pop(peer_id, None)
        if link is None:
            return

        for task in link.tasks:
            if not task.done():
                task.cancel()
        link.tasks.clear()
        link.pending_candidates.clear()

        target = LinkState.FAILED if failed and link.can_transition(LinkState.FAILED) else LinkState.CLOSED
        try:
            link.transition(target)
        except InvalidTransition as e:
            logger.debug(f"[WebRTC] {e}")

        try:
            await link.pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} 연결 종료 중 오류: {e}")

        self.events.put_nowait(LinkEvent("closed", peer_id, state=link.state))
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 링크 종료 ({link.state.value})")

    async def close_all(self) -> None:
        """모든 링크를 종료합니다 (룸 퇴장/채널 종료)."""
        for peer_id in list(self.links.keys()):
            await self.close_link(peer_id)
        self.local_id = None

    def get_link(self, peer_id: str) -> Optional[PeerLink]:
        return self.links.get(peer_id)

    def subscribe(self, track: MediaStreamTrack) -> MediaStreamTrack:
        """트랙 하나를 여러 소비자(링크, 발화자 감지)가 나눠 읽도록 구독 트랙을 만듭니다."""
        if self.relay is None:
            return track
        return self.relay.subscribe(track)

    def notify_speaking(self, peer_id: str, speaking: bool) -> None:
        self.events.put_nowait(LinkEvent("speaking", peer_id, speaking=speaking))

    # ------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------

    def _is_live(self, link: PeerLink) -> bool:
        """링크가 아직 links 테이블의 현재 링크인지 (await 도중 정리되었는지 확인)."""
        return self.links.get(link.peer_id) is link

    def _set_state(self, link: PeerLink, state: LinkState) -> None:
        link.transition(state)
        self.events.put_nowait(LinkEvent("state", link.peer_id, state=state))

    async def _fail(self, link: PeerLink) -> None:
        if self._is_live(link):
            await self.close_link(link.peer_id, failed=True)

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self.send(message)
        except Exception as e:
            logger.warning(f"[WebRTC] {message.get('type')} 전송 실패: {e}")
