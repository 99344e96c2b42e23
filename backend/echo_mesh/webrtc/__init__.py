"""WebRTC 모듈.

클라이언트 측 피어 링크 상태 머신, 로컬 트랙 관리, 발화자 감지 기능을 제공합니다.

Classes:
    PeerSessionManager: 원격 참가자별 Peer Link 관리 및 offer/answer/candidate 처리
    PeerLink: 원격 참가자 한 명에 대한 세션 (상태 머신)
    MediaTrackController: 마이크/카메라/화면 공유 트랙 게시 및 재협상
    SwitchableTrack: enabled 플래그로 켜고 끌 수 있는 트랙
    ActiveSpeakerMonitor: 오디오 진폭 기반 발화자 감지

Config:
    ice_config: ICE 서버 설정
    media_config: 캡처 장치 설정
    speaker_config: 발화자 감지 설정
"""

from .config import (
    ice_config,
    media_config,
    speaker_config,
    ICEServerConfig,
    MediaConfig,
    SpeakerConfig,
)
from .link import LinkRole, LinkState, PeerLink
from .tracks import ActiveSpeakerMonitor, SpeakingState, SwitchableTrack
from .peer_manager import LinkEvent, PeerSessionManager
from .media import CaptureProvider, MediaPlayerCapture, MediaTrackController

__all__ = [
    # Classes
    "PeerSessionManager",
    "LinkEvent",
    "PeerLink",
    "LinkRole",
    "LinkState",
    "MediaTrackController",
    "CaptureProvider",
    "MediaPlayerCapture",
    "SwitchableTrack",
    "SpeakingState",
    "ActiveSpeakerMonitor",
    # Config
    "ice_config",
    "media_config",
    "speaker_config",
    "ICEServerConfig",
    "MediaConfig",
    "SpeakerConfig",
]
