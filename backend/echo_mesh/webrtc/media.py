"""로컬 미디어 트랙 관리 모듈.

마이크/카메라 캡처 스트림(룸 세션 동안 1회 획득)과 선택적인 화면 공유
스트림을 소유하고, 게시 트랙 집합이 바뀌면 PeerSessionManager를 통해
재협상을 일으킵니다.

동작 요약:
    - 마이크/카메라 on/off: 이미 붙어 있는 트랙의 enabled 플래그만 변경 (재협상 없음)
    - 화면 공유 시작: 새 캡처 스트림을 모든 활성 링크에 붙이고 재협상
    - 화면 공유 종료(사용자 또는 OS의 ended 이벤트): 트랙 제거, 캡처 중지, 재협상
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from ..errors import MediaPermissionDenied
from .config import media_config
from .peer_manager import PeerSessionManager
from .tracks import ActiveSpeakerMonitor, SwitchableTrack

logger = logging.getLogger(__name__)

LOCAL_SPEAKER_KEY = "local"


class CaptureProvider:
    """캡처 장치 제공자 인터페이스."""

    async def open_user_media(self) -> List[MediaStreamTrack]:
        """마이크/카메라 트랙을 엽니다.

        Raises:
            MediaPermissionDenied: 장치를 열 수 없는 경우
        """
        raise NotImplementedError

    async def open_display_media(self) -> List[MediaStreamTrack]:
        """화면 캡처 트랙을 엽니다.

        Raises:
            MediaPermissionDenied: 화면 캡처를 시작할 수 없는 경우
        """
        raise NotImplementedError


class MediaPlayerCapture(CaptureProvider):
    """aiortc MediaPlayer(FFmpeg) 기반 캡처 제공자.

    장치 열기는 블로킹 호출이므로 asyncio.to_thread로 이벤트 루프 밖에서 실행합니다.
    """

    def __init__(self, config=media_config):
        self.config = config

    async def _open(self, device: str, fmt: str, options=None) -> MediaPlayer:
        try:
            return await asyncio.to_thread(MediaPlayer, device, format=fmt, options=options)
        except Exception as e:
            raise MediaPermissionDenied(f"{fmt} 장치 '{device}'를 열 수 없음: {e}") from e

    async def open_user_media(self) -> List[MediaStreamTrack]:
        microphone = await self._open(self.config.AUDIO_DEVICE, self.config.AUDIO_FORMAT)
        try:
            camera = await self._open(
                self.config.VIDEO_DEVICE, self.config.VIDEO_FORMAT, self.config.video_options
            )
        except MediaPermissionDenied:
            if microphone.audio is not None:
                microphone.audio.stop()
            raise

        tracks = [t for t in (microphone.audio, camera.video) if t is not None]
        if not tracks:
            raise MediaPermissionDenied("캡처 장치에서 오디오/비디오 트랙을 찾을 수 없음")
        logger.info(f"[Media] 로컬 캡처 시작: {[t.kind for t in tracks]}")
        return tracks

    async def open_display_media(self) -> List[MediaStreamTrack]:
        player = await self._open(
            self.config.SCREEN_DEVICE, self.config.SCREEN_FORMAT, self.config.video_options
        )
        if player.video is None:
            raise MediaPermissionDenied("화면 캡처 트랙을 찾을 수 없음")
        return [player.video]


class MediaTrackController:
    """로컬 게시 트랙 집합을 관리하는 클래스.

    Attributes:
        manager (PeerSessionManager): 트랙을 붙일 링크들의 관리자
        capture (CaptureProvider): 캡처 장치 제공자
        microphone (Optional[SwitchableTrack]): 마이크 트랙
        camera (Optional[SwitchableTrack]): 카메라 트랙
        screen_tracks (List[MediaStreamTrack]): 공유 중인 화면 트랙 (없으면 빈 리스트)

    Examples:
        >>> media = MediaTrackController(manager)
        >>> await media.start()          # 입장 전에 호출 (실패 시 MediaPermissionDenied)
        >>> media.toggle_mic()           # False: 음소거
        >>> await media.toggle_screen_share()
        >>> await media.release()
    """

    def __init__(
        self,
        manager: PeerSessionManager,
        capture: Optional[CaptureProvider] = None,
        on_speaking: Optional[Callable[[str, bool], None]] = None,
        detect_speaker: bool = True,
    ):
        self.manager = manager
        self.capture = capture or MediaPlayerCapture()
        self.on_speaking = on_speaking or manager.notify_speaking
        self.detect_speaker = detect_speaker

        self.microphone: Optional[SwitchableTrack] = None
        self.camera: Optional[SwitchableTrack] = None
        self.screen_tracks: List[MediaStreamTrack] = []

        self._speaker_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """마이크/카메라를 획득해 게시합니다.

        Raises:
            MediaPermissionDenied: 장치를 열 수 없는 경우 (아무것도 게시되지 않음)
        """
        for track in await self.capture.open_user_media():
            wrapped = SwitchableTrack(track)
            if track.kind == "audio" and self.microphone is None:
                self.microphone = wrapped
            elif track.kind == "video" and self.camera is None:
                self.camera = wrapped
            else:
                track.stop()
                continue
            await self.manager.publish_track(wrapped)

        if self.microphone is not None and self.detect_speaker:
            monitor = ActiveSpeakerMonitor(LOCAL_SPEAKER_KEY, self.on_speaking)
            self._speaker_task = asyncio.create_task(
                monitor.run(self.manager.subscribe(self.microphone))
            )

    def toggle_mic(self) -> bool:
        """마이크 on/off. 변경 후 상태를 반환합니다."""
        return self._toggle(self.microphone)

    def toggle_camera(self) -> bool:
        """카메라 on/off. 변경 후 상태를 반환합니다."""
        return self._toggle(self.camera)

    def _toggle(self, track: Optional[SwitchableTrack]) -> bool:
        if track is None:
            return False
        track.enabled = not track.enabled
        logger.info(f"[Media] {track.kind} {'켜짐' if track.enabled else '꺼짐'}")
        return track.enabled

    @property
    def is_sharing_screen(self) -> bool:
        return bool(self.screen_tracks)

    async def start_screen_share(self) -> bool:
        """화면 공유를 시작합니다.

        Returns:
            bool: 공유 중이면 True. 캡처를 시작하지 못하면 False (세션은 유지)
        """
        if self.screen_tracks:
            return True
        try:
            tracks = await self.capture.open_display_media()
        except MediaPermissionDenied as e:
            logger.warning(f"[Media] 화면 공유 시작 실패: {e}")
            return False

        self.screen_tracks = list(tracks)
        for track in tracks:
            track.on("ended", self._on_screen_ended)
            await self.manager.publish_track(track)
        logger.info("[Media] 화면 공유 시작")
        return True

    async def stop_screen_share(self) -> None:
        """화면 트랙을 모든 링크에서 떼어내고 캡처를 중지합니다."""
        tracks, self.screen_tracks = self.screen_tracks, []
        if not tracks:
            return
        for track in tracks:
            await self.manager.unpublish_track(track)
        for track in tracks:
            track.stop()
        logger.info("[Media] 화면 공유 종료")

    async def toggle_screen_share(self) -> bool:
        """화면 공유 토글. 변경 후 공유 여부를 반환합니다."""
        if self.screen_tracks:
            await self.stop_screen_share()
            return False
        return await self.start_screen_share()

    def _on_screen_ended(self) -> None:
        # stop_screen_share가 트랙을 멈출 때도 호출되므로 이미 비어 있으면 무시
        if not self.screen_tracks:
            return
        logger.info("[Media] 화면 캡처가 외부에서 종료됨")
        task = asyncio.create_task(self.stop_screen_share())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def release(self) -> None:
        """모든 캡처 자원을 해제합니다 (룸 퇴장/채널 종료 시)."""
        if self._speaker_task is not None:
            self._speaker_task.cancel()
            self._speaker_task = None
        for task in list(self._tasks):
            task.cancel()

        tracks = [t for t in (self.microphone, self.camera) if t is not None] + self.screen_tracks
        self.screen_tracks = []
        self.microphone = None
        self.camera = None
        for track in tracks:
            track.stop()
            if track in self.manager.local_tracks:
                self.manager.local_tracks.remove(track)
        logger.info("[Media] 로컬 캡처 해제")
