"""Health Check API 라우터.

시그널링 서버 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter

from .signaling import get_relay

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """서버 상태와 룸/채널 수를 확인합니다.

    Returns:
        dict: status, rooms(활성 룸 수), clients(연결된 채널 수)
    """
    relay = get_relay()
    if relay is None:
        return {"status": "not_initialized", "rooms": 0, "clients": 0}

    return {
        "status": "ok",
        "rooms": len(relay.registry.rooms),
        "clients": relay.registry.client_count,
    }
