"""릴레이(시그널링 서버) 메시지 모델 및 디코더.

릴레이와 주고받는 JSON 메시지를 pydantic 모델로 정의합니다.
수신 메시지 디코딩은 절대 예외를 던지지 않으며, 구조나 타입이 맞지 않으면
None을 반환하여 해당 메시지만 버립니다.

Outbound (peer → relay):
    - join: {"type": "join", "room", "role"}
    - leave: {"type": "leave"}
    - signal: {"type": "signal", "data"}

Inbound (relay → peer):
    - joined: {"type": "joined", "room", "role", "peerPresent"}
    - peer_joined / peer_left: {"type", "role"}
    - signal: {"type": "signal", "from", "data"}
    - error: {"type": "error", "code", "message"}
"""

import json
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

Role = Literal["host", "client"]

NonEmptyStr = Annotated[str, Field(strict=True, min_length=1)]


class WireModel(BaseModel):
    """와이어 포맷 메시지의 공통 베이스 모델."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON 직렬화 가능한 dict로 변환합니다 (필드 별칭 사용, None 제외)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        """전송용 JSON 문자열로 변환합니다."""
        return json.dumps(self.to_wire(), separators=(",", ":"))


# ============================================================
# Outbound
# ============================================================

class JoinMessage(WireModel):
    type: Literal["join"] = "join"
    room: str
    role: Role


class LeaveMessage(WireModel):
    type: Literal["leave"] = "leave"


class SignalMessage(WireModel):
    type: Literal["signal"] = "signal"
    data: Any


# ============================================================
# Inbound
# ============================================================

class JoinedMessage(WireModel):
    type: Literal["joined"] = "joined"
    room: NonEmptyStr
    role: Role
    peer_present: StrictBool = Field(alias="peerPresent")


class PeerJoinedMessage(WireModel):
    type: Literal["peer_joined"] = "peer_joined"
    role: Role


class PeerLeftMessage(WireModel):
    type: Literal["peer_left"] = "peer_left"
    role: Role


class PeerSignalMessage(WireModel):
    type: Literal["signal"] = "signal"
    from_: Role = Field(alias="from")
    data: Any = None


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    code: NonEmptyStr
    message: NonEmptyStr


RelayMessage = Union[
    JoinedMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    PeerSignalMessage,
    ErrorMessage,
]

_relay_adapter: TypeAdapter = TypeAdapter(
    Annotated[RelayMessage, Field(discriminator="type")]
)


def safe_parse_json(value: Any) -> Any:
    """JSON 문자열을 파싱합니다. 실패하면 None을 반환합니다."""
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(value, str):
        return None
    try:
        return json.loads(value)
    except (ValueError, RecursionError):
        return None


def decode_relay_message(raw: Any) -> Optional[RelayMessage]:
    """릴레이에서 받은 메시지를 타입별 모델로 디코딩합니다.

    Args:
        raw: json.loads() 결과 (임의의 값)

    Returns:
        Optional[RelayMessage]: 유효한 메시지면 해당 모델, 아니면 None

    Examples:
        >>> decode_relay_message({"type": "peer_joined", "role": "client"})
        PeerJoinedMessage(type='peer_joined', role='client')
        >>> decode_relay_message({"type": "joined", "room": "AB12"}) is None
        True
    """
    try:
        return _relay_adapter.validate_python(raw)
    except (ValidationError, TypeError) as e:
        logger.debug(f"[Signaling] 잘못된 릴레이 메시지 무시: {e}")
        return None
