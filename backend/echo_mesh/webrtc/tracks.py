"""로컬 트랙 래퍼 및 발화자 감지 모듈.

캡처한 트랙을 감싸 마이크/카메라 on/off를 시그널링 없이 처리하고,
오디오 트랙의 진폭을 샘플링하여 발화 여부를 판단합니다.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

from .config import speaker_config

logger = logging.getLogger(__name__)


class SwitchableTrack(MediaStreamTrack):
    """enabled 플래그로 켜고 끌 수 있는 트랙.

    원본 트랙의 프레임을 그대로 전달하다가, 비활성화되면 같은 타이밍의
    무음 오디오 / 검은 화면 프레임으로 대체합니다. 트랜시버와 SDP는 그대로이므로
    on/off에 재협상이 필요하지 않습니다.

    Attributes:
        track (MediaStreamTrack): 캡처 장치에서 얻은 원본 트랙
        enabled (bool): False이면 대체 프레임 전송

    Examples:
        >>> mic = SwitchableTrack(player.audio)
        >>> mic.enabled = False  # 상대방에게는 무음이 전달됨
    """

    def __init__(self, track: MediaStreamTrack):
        super().__init__()
        self.kind = track.kind
        self.track = track
        self.enabled = True

    async def recv(self):
        frame = await self.track.recv()
        if self.enabled:
            return frame
        if isinstance(frame, AudioFrame):
            return silence_like(frame)
        if isinstance(frame, VideoFrame):
            return black_like(frame)
        return frame

    def stop(self):
        super().stop()
        self.track.stop()


def silence_like(frame: AudioFrame) -> AudioFrame:
    """같은 포맷/길이/타임스탬프의 무음 프레임."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    silent.time_base = frame.time_base
    return silent


def black_like(frame: VideoFrame) -> VideoFrame:
    """같은 크기/타임스탬프의 검은 화면 프레임."""
    black = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="bgr24"
    )
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


def audio_level(frame: AudioFrame) -> float:
    """오디오 프레임의 RMS 진폭 (0.0 ~ 1.0 정규화).

    s16 계열 정수 샘플은 32768로 나누어 정규화합니다.
    """
    samples = frame.to_ndarray()
    if samples.size == 0:
        return 0.0
    if np.issubdtype(samples.dtype, np.integer):
        samples = samples.astype(np.float32) / 32768.0
    else:
        samples = samples.astype(np.float32)
    return float(np.sqrt(np.mean(np.square(samples))))


class SpeakingState:
    """발화 여부 판정기.

    임계값을 넘으면 즉시 발화 중으로 표시하고, 아래로 떨어져도 hold 시간
    동안은 표시를 유지하여 깜빡임을 막습니다.
    """

    def __init__(self, threshold: float = speaker_config.RMS_THRESHOLD,
                 hold: float = speaker_config.HOLD_TIME):
        self.threshold = threshold
        self.hold = hold
        self.speaking = False
        self._last_loud: Optional[float] = None

    def update(self, level: float, now: float) -> bool:
        """새 샘플을 반영합니다.

        Returns:
            bool: 발화 상태가 바뀌었으면 True
        """
        if level > self.threshold:
            self._last_loud = now
            speaking = True
        else:
            speaking = (
                self.speaking
                and self._last_loud is not None
                and now - self._last_loud <= self.hold
            )

        changed = speaking != self.speaking
        self.speaking = speaking
        return changed


class ActiveSpeakerMonitor:
    """오디오 트랙을 소비하며 발화 상태 변화를 알리는 모니터.

    Attributes:
        key (str): 알림에 함께 전달할 식별자 ("local" 또는 원격 클라이언트 ID)
        on_change (Callable[[str, bool], None]): 발화 상태 변경 콜백
    """

    def __init__(
        self,
        key: str,
        on_change: Callable[[str, bool], None],
        interval: float = speaker_config.SAMPLE_INTERVAL,
        state: Optional[SpeakingState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.key = key
        self.on_change = on_change
        self.interval = interval
        self.state = state or SpeakingState()
        self.clock = clock

    async def run(self, track: MediaStreamTrack) -> None:
        """트랙이 끝나거나 태스크가 취소될 때까지 프레임을 샘플링합니다."""
        last_sample: Optional[float] = None
        try:
            while True:
                frame = await track.recv()
                now = self.clock()
                if last_sample is not None and now - last_sample < self.interval:
                    continue
                last_sample = now
                if self.state.update(audio_level(frame), now):
                    self.on_change(self.key, self.state.speaking)
        except MediaStreamError:
            logger.debug(f"[Speaker] {self.key[:8]} 오디오 트랙 종료")
        except asyncio.CancelledError:
            logger.debug(f"[Speaker] {self.key[:8]} 모니터 취소됨")
            raise
