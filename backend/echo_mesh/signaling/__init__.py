"""시그널링 모듈.

룸 멤버십 관리와 세션 수립 메시지 중계를 담당합니다.

Classes:
    RoomRegistry: 룸 및 클라이언트 세션 테이블
    ClientSession: 채널 하나에 대응하는 세션
    SignalingRelay: 주소 지정 메시지 중계 및 룸 브로드캐스트
"""

from .registry import RoomRegistry, ClientSession
from .relay import SignalingRelay
from .messages import MessageType, parse_client_message

__all__ = [
    "RoomRegistry",
    "ClientSession",
    "SignalingRelay",
    "MessageType",
    "parse_client_message",
]
