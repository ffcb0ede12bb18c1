"""데이터 채널 제어 프로토콜.

호스트가 생성한 "control" 데이터 채널 위로 주고받는 JSON 메시지를 정의합니다.
메시지 종류는 `t` 필드로, 입력 이벤트 종류는 `k` 필드로 구분합니다.

Messages:
    - hello: {"t": "hello", "protocol": 1, "role", "name"?}
    - host_info: {"t": "host_info", "protocol": 1, "capture": {"width", "height", "frameRate"?}}
    - ping / pong: {"t", "id", "ts"}
    - input: {"t": "input", "events": [InputEvent, ...]}

InputEvent:
    - mouse_move: {"k", "x", "y"}  (x, y 는 [0, 1] 로 정규화된 영상 좌표)
    - mouse_button: {"k", "button": 0|1|2, "down"}
    - mouse_wheel: {"k", "dx", "dy"}
    - key: {"k", "code", "down", "alt", "ctrl", "meta", "shift"}

Note:
    - input 배치는 개별 이벤트 단위로 검증합니다. 잘못된 이벤트 하나가
      배치 전체를 버리지 않습니다.
    - 디코더는 예외를 던지지 않고 None을 반환합니다.
"""

import logging
import math
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from .signaling import NonEmptyStr, Role, WireModel

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1


def _finite(v: Union[int, float]) -> float:
    try:
        v = float(v)
    except OverflowError:
        raise ValueError("number out of range")
    if not math.isfinite(v):
        raise ValueError("number must be finite")
    return v


def _unit_interval(v: float) -> float:
    return min(1.0, max(0.0, v))


def _protocol_version(v: int) -> int:
    if v != PROTOCOL_VERSION:
        raise ValueError(f"unsupported protocol version: {v}")
    return v


def _mouse_button(v: int) -> int:
    if v not in (0, 1, 2):
        raise ValueError(f"invalid mouse button: {v}")
    return v


Number = Annotated[Union[StrictInt, StrictFloat], AfterValidator(_finite)]
UnitNumber = Annotated[Number, AfterValidator(_unit_interval)]
ProtocolVersion = Annotated[StrictInt, AfterValidator(_protocol_version)]
MouseButton = Annotated[StrictInt, AfterValidator(_mouse_button)]
Dimension = Annotated[int, Field(strict=True, ge=0)]


# ============================================================
# Input events
# ============================================================

class MouseMoveEvent(WireModel):
    k: Literal["mouse_move"] = "mouse_move"
    x: UnitNumber
    y: UnitNumber


class MouseButtonEvent(WireModel):
    k: Literal["mouse_button"] = "mouse_button"
    button: MouseButton
    down: StrictBool


class MouseWheelEvent(WireModel):
    k: Literal["mouse_wheel"] = "mouse_wheel"
    dx: Number
    dy: Number


class KeyEvent(WireModel):
    k: Literal["key"] = "key"
    code: NonEmptyStr
    down: StrictBool
    alt: bool = False
    ctrl: bool = False
    meta: bool = False
    shift: bool = False

    @field_validator("alt", "ctrl", "meta", "shift", mode="before")
    @classmethod
    def _modifier(cls, v: Any) -> bool:
        # 누락되거나 bool 이 아닌 modifier 는 false 로 취급
        return v if isinstance(v, bool) else False


InputEvent = Union[MouseMoveEvent, MouseButtonEvent, MouseWheelEvent, KeyEvent]

_input_event_adapter: TypeAdapter = TypeAdapter(
    Annotated[InputEvent, Field(discriminator="k")]
)


def decode_input_event(raw: Any) -> Optional[InputEvent]:
    """입력 이벤트 하나를 디코딩합니다. 유효하지 않으면 None."""
    try:
        return _input_event_adapter.validate_python(raw)
    except (ValidationError, TypeError):
        return None


# ============================================================
# Control messages
# ============================================================

class CaptureInfo(WireModel):
    width: Dimension
    height: Dimension
    frame_rate: Optional[float] = Field(default=None, alias="frameRate")

    @field_validator("frame_rate", mode="before")
    @classmethod
    def _lenient_frame_rate(cls, v: Any) -> Optional[float]:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        try:
            return _finite(v)
        except ValueError:
            return None


class HelloMessage(WireModel):
    t: Literal["hello"] = "hello"
    protocol: ProtocolVersion = PROTOCOL_VERSION
    role: Role
    name: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _lenient_name(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None


class HostInfoMessage(WireModel):
    t: Literal["host_info"] = "host_info"
    protocol: ProtocolVersion = PROTOCOL_VERSION
    capture: CaptureInfo


class PingMessage(WireModel):
    t: Literal["ping"] = "ping"
    id: StrictInt
    ts: Number


class PongMessage(WireModel):
    t: Literal["pong"] = "pong"
    id: StrictInt
    ts: Number


class InputMessage(WireModel):
    t: Literal["input"] = "input"
    events: List[InputEvent]

    @field_validator("events", mode="before")
    @classmethod
    def _keep_valid_events(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        items = [raw.to_wire() if isinstance(raw, WireModel) else raw for raw in v]
        valid = [raw for raw in items if decode_input_event(raw) is not None]
        if len(valid) != len(v):
            logger.debug(f"[Control] 잘못된 입력 이벤트 {len(v) - len(valid)}개 제외")
        return valid


ControlMessage = Union[
    HelloMessage,
    HostInfoMessage,
    PingMessage,
    PongMessage,
    InputMessage,
]

_control_adapter: TypeAdapter = TypeAdapter(
    Annotated[ControlMessage, Field(discriminator="t")]
)


def decode_control_message(raw: Any) -> Optional[ControlMessage]:
    """데이터 채널로 받은 제어 메시지를 디코딩합니다.

    Args:
        raw: json.loads() 결과 (임의의 값)

    Returns:
        Optional[ControlMessage]: 유효하면 해당 모델, 아니면 None.
            input 메시지는 개별적으로 유효한 이벤트만 포함합니다.

    Examples:
        >>> msg = decode_control_message({
        ...     "t": "input",
        ...     "events": [{"k": "mouse_move", "x": 0.5, "y": 0.5}, {"k": "bogus"}],
        ... })
        >>> len(msg.events)
        1
    """
    try:
        return _control_adapter.validate_python(raw)
    except (ValidationError, TypeError) as e:
        logger.debug(f"[Control] 잘못된 제어 메시지 무시: {e}")
        return None
