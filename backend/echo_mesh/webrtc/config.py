"""WebRTC 모듈 설정.

STUN/TURN 서버, 캡처 장치, 발화자 감지 등 클라이언트 측 WebRTC 관련
상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, List, Optional

from aiortc import RTCIceServer
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_dicts(self) -> List[Dict[str, str]]:
        """브라우저/클라이언트에 내려줄 ICE 서버 목록 (JSON 형식)."""
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": stun_url})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers

    def ice_servers(self) -> List[RTCIceServer]:
        """aiortc RTCConfiguration에 넣을 RTCIceServer 목록."""
        return [
            RTCIceServer(
                urls=[entry["urls"]],
                username=entry.get("username"),
                credential=entry.get("credential"),
            )
            for entry in self.as_dicts()
        ]


# ============================================================
# 캡처 장치 설정
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """로컬 캡처 장치 설정 (aiortc MediaPlayer 입력)."""

    # 마이크
    AUDIO_DEVICE: str = os.getenv("ECHO_AUDIO_DEVICE", "default")
    AUDIO_FORMAT: str = os.getenv("ECHO_AUDIO_FORMAT", "pulse")

    # 카메라
    VIDEO_DEVICE: str = os.getenv("ECHO_VIDEO_DEVICE", "/dev/video0")
    VIDEO_FORMAT: str = os.getenv("ECHO_VIDEO_FORMAT", "v4l2")

    # 640x360 @ 15fps
    VIDEO_SIZE: str = os.getenv("ECHO_VIDEO_SIZE", "640x360")
    FRAME_RATE: str = os.getenv("ECHO_FRAME_RATE", "15")

    # 화면 공유
    SCREEN_DEVICE: str = os.getenv("ECHO_SCREEN_DEVICE", os.getenv("DISPLAY", ":0.0"))
    SCREEN_FORMAT: str = os.getenv("ECHO_SCREEN_FORMAT", "x11grab")

    @property
    def video_options(self) -> Dict[str, str]:
        return {"video_size": self.VIDEO_SIZE, "framerate": self.FRAME_RATE}


# ============================================================
# 발화자 감지 설정
# ============================================================

@dataclass(frozen=True)
class SpeakerConfig:
    """발화자(active speaker) 표시 설정. 세션 상태에는 영향 없음."""

    # 샘플링 간격 (초)
    SAMPLE_INTERVAL: float = 0.12

    # RMS 임계값 (정규화된 진폭 기준)
    RMS_THRESHOLD: float = 0.02

    # 임계값 아래로 떨어진 뒤 표시를 유지하는 시간 (초)
    HOLD_TIME: float = 0.4


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
media_config = MediaConfig()
speaker_config = SpeakerConfig()


logger.debug(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.debug(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
