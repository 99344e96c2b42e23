"""룸 참가 클라이언트.

Classes:
    EchoClient: 시그널링 채널, 피어 링크, 로컬 트랙을 묶은 클라이언트 세션
    ClientStatus: 사용자에게 보여줄 상태
    ChatEntry: 채팅 로그 항목
"""

from .session import ChatEntry, ClientStatus, EchoClient

__all__ = [
    "EchoClient",
    "ClientStatus",
    "ChatEntry",
]
