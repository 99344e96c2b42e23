"""시그널링/피어 세션 예외 정의.

서버와 클라이언트가 공통으로 사용하는 예외 계층입니다.

Classes:
    EchoError: 모든 예외의 기반 클래스
    MalformedMessage: 파싱/검증에 실패한 메시지
    RoomFullError: 룸 정원 초과로 입장 거부
    MediaPermissionDenied: 캡처 장치 획득 실패
    InvalidTransition: 피어 링크 상태 머신이 허용하지 않는 전이
"""


class EchoError(Exception):
    """echo_mesh 예외의 기반 클래스."""


class MalformedMessage(EchoError):
    """JSON 파싱 또는 스키마 검증에 실패한 시그널링 메시지."""


class RoomFullError(EchoError):
    """룸이 최대 인원에 도달하여 입장을 거부한 경우.

    Attributes:
        room_id (str): 입장하려던 룸 ID
        limit (int): 룸 최대 인원
    """

    def __init__(self, room_id: str, limit: int):
        super().__init__(f"Room '{room_id}' is full (limit: {limit})")
        self.room_id = room_id
        self.limit = limit


class MediaPermissionDenied(EchoError):
    """카메라/마이크 장치를 열 수 없는 경우. 세션을 시작하지 않습니다."""


class InvalidTransition(EchoError):
    """피어 링크 상태 머신에서 허용되지 않는 전이 요청."""

    def __init__(self, peer_id: str, current, target):
        super().__init__(f"Peer link {peer_id}: {current.value} -> {target.value} not allowed")
        self.peer_id = peer_id
        self.current = current
        self.target = target
