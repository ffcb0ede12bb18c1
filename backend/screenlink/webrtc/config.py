"""WebRTC 세션 설정.

릴레이 주소, 룸 코드, STUN/TURN 설정 등 세션 단위 설정과
프로토콜/타이밍 상수를 정의합니다.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..protocol.room import normalize_room

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 세션 설정 (시도 단위로 불변)
# ============================================================

class SessionSettings(BaseSettings):
    """세션 설정 클래스.

    환경 변수(SCREENLINK_ 접두사)를 Python 객체로 매핑합니다.
    한 번의 연결 시도 동안 변경되지 않도록 frozen 모델로 정의합니다.

    Examples:
        >>> settings = SessionSettings(room=" ab-12cd ")
        >>> settings.room
        'AB12CD'
    """

    model_config = SettingsConfigDict(
        env_prefix="SCREENLINK_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    signaling_url: str = Field(
        default="ws://localhost:8080/ws",
        description="시그널링 릴레이 WebSocket URL",
    )

    room: str = Field(
        default="",
        description="룸 코드 ([A-Z0-9])",
    )

    stun_url: str = Field(
        default="stun:stun.l.google.com:19302",
        description="STUN 서버 URL (빈 문자열이면 STUN 미사용)",
    )

    use_turn_from_signaling: bool = Field(
        default=False,
        description="릴레이의 /turn 엔드포인트에서 TURN 자격증명 조회 여부",
    )

    @field_validator("room")
    @classmethod
    def validate_room(cls, v: str) -> str:
        """룸 코드 정규화"""
        return normalize_room(v)

    @field_validator("signaling_url", "stun_url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        """URL 앞뒤 공백 제거"""
        return v.strip()


# ============================================================
# 연결/프로토콜 상수
# ============================================================

@dataclass(frozen=True)
class ConnectionConfig:
    """WebRTC 연결 관련 설정."""

    # 데이터 채널 라벨
    CONTROL_CHANNEL_LABEL: str = "control"

    # 텔레메트리 샘플링 주기 (초)
    STATS_INTERVAL: float = 1.0

    # 입력 플러시 주기 (초) - 60Hz 디스플레이 기준 1틱
    INPUT_FLUSH_INTERVAL: float = 1 / 60

    # TURN 자격증명 조회 타임아웃 (초)
    TURN_FETCH_TIMEOUT: float = 5.0

    # 릴레이 WebSocket keepalive (초)
    RELAY_PING_INTERVAL: float = 20.0
    RELAY_PING_TIMEOUT: float = 10.0
    RELAY_OPEN_TIMEOUT: float = 10.0


# ============================================================
# 싱글톤 인스턴스
# ============================================================

connection_config = ConnectionConfig()


logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(
    f"[WebRTC Config] 통계 주기: {connection_config.STATS_INTERVAL}s, "
    f"입력 플러시 주기: {connection_config.INPUT_FLUSH_INTERVAL * 1000:.1f}ms"
)
