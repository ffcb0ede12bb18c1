"""WebRTC 시그널 페이로드 (signal 메시지의 data 필드).

릴레이는 data 내용을 해석하지 않고 상대 피어에게 그대로 전달합니다.

Payload:
    - description: {"kind": "description", "description": {"type": "offer"|"answer", "sdp"}}
    - candidate: {"kind": "candidate", "candidate": {"candidate", "sdpMid"?, "sdpMLineIndex"?}}
"""

import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from .signaling import NonEmptyStr, WireModel

logger = logging.getLogger(__name__)


class SessionDescriptionInit(WireModel):
    type: Literal["offer", "answer"]
    sdp: NonEmptyStr


class IceCandidateInit(WireModel):
    """ICE candidate 정보.

    sdpMid / sdpMLineIndex 는 선택 항목입니다. 타입이 맞지 않거나
    인덱스가 음수이면 candidate 전체를 버리지 않고 해당 필드만 없는 것으로 취급합니다.
    """

    candidate: NonEmptyStr
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")

    @field_validator("sdp_mid", mode="before")
    @classmethod
    def _lenient_mid(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("sdp_mline_index", mode="before")
    @classmethod
    def _lenient_mline_index(cls, v: Any) -> Optional[int]:
        if isinstance(v, bool):
            return None
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        if not isinstance(v, int) or v < 0:
            return None
        return v


class DescriptionPayload(WireModel):
    kind: Literal["description"] = "description"
    description: SessionDescriptionInit


class CandidatePayload(WireModel):
    kind: Literal["candidate"] = "candidate"
    candidate: IceCandidateInit


SignalPayload = Union[DescriptionPayload, CandidatePayload]

_payload_adapter: TypeAdapter = TypeAdapter(
    Annotated[SignalPayload, Field(discriminator="kind")]
)


def decode_signal_payload(raw: Any) -> Optional[SignalPayload]:
    """signal 메시지의 data를 디코딩합니다. 유효하지 않으면 None."""
    try:
        return _payload_adapter.validate_python(raw)
    except (ValidationError, TypeError) as e:
        logger.debug(f"[Signaling] 잘못된 시그널 페이로드 무시: {e}")
        return None
