"""서버 설정 모듈.

시그널링 서버 호스트/포트, WebSocket 경로, 룸 정원, 로깅 설정을
환경 변수(및 config/.env)에서 읽어옵니다.
"""

import logging
from typing import Optional
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# .env 파일 로드
_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


class EchoSettings(BaseSettings):
    """시그널링 서버 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    # 서버 바인딩
    HOST: str = Field(default="0.0.0.0", description="서버 바인딩 호스트")
    PORT: int = Field(default=3000, description="서버 포트")

    # 시그널링 채널 경로
    WS_PATH: str = Field(default="/ws", description="WebSocket 시그널링 경로")

    # 룸 설정
    MAX_ROOM_SIZE: Optional[int] = Field(
        default=None,
        description="룸 최대 인원 (미설정 시 제한 없음)"
    )

    DEFAULT_DISPLAY_NAME: str = Field(
        default="Guest",
        description="join 메시지에 이름이 없을 때 사용할 표시 이름"
    )

    # CORS
    CORS_ORIGIN_REGEX: str = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3})(:\d+)?$",
        description="허용할 Origin 정규식"
    )

    # 로깅 설정
    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_DIR: str = Field(default="logs", description="로그 파일 디렉토리")
    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    ENV: str = Field(default="development", description="실행 환경")

    @field_validator('MAX_ROOM_SIZE')
    @classmethod
    def validate_max_room_size(cls, v: Optional[int]) -> Optional[int]:
        """룸 정원 유효성 검증 (0 이하는 제한 없음으로 취급)"""
        if v is not None and v <= 0:
            return None
        return v

    @field_validator('WS_PATH')
    @classmethod
    def validate_ws_path(cls, v: str) -> str:
        """WebSocket 경로는 '/'로 시작해야 함"""
        if not v.startswith("/"):
            raise ValueError("WS_PATH는 '/'로 시작해야 합니다.")
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    class Config:
        """Pydantic 설정"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> EchoSettings:
    """설정 싱글톤 인스턴스 반환.

    Returns:
        EchoSettings: 설정 객체
    """
    return EchoSettings()
