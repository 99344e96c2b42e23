"""Echo Mesh 패키지.

여러 참가자가 이름 있는 룸에 입장해 서로 풀 메시 WebRTC 세션을 맺도록
돕는 시그널링 서버와 클라이언트 구현입니다.

Modules:
    signaling: 룸 멤버십 테이블 및 시그널링 릴레이 (서버)
    webrtc: 피어 링크 상태 머신 및 로컬 트랙 관리 (클라이언트)
    client: 채널 연결과 링크/미디어를 묶는 클라이언트 세션 및 CLI
    config: 서버 설정
    errors: 예외 계층
"""

from .errors import (
    EchoError,
    InvalidTransition,
    MalformedMessage,
    MediaPermissionDenied,
    RoomFullError,
)

__version__ = "0.1.0"

__all__ = [
    "EchoError",
    "InvalidTransition",
    "MalformedMessage",
    "MediaPermissionDenied",
    "RoomFullError",
]
