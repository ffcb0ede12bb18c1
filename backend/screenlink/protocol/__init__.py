"""메시지 코덱 모듈.

릴레이 메시지, WebRTC 시그널 페이로드, 데이터 채널 제어 메시지의
모델과 디코더를 제공합니다. 모든 디코더는 예외 없이 None을 반환합니다.
"""

from .room import normalize_room, generate_room_code, ROOM_CODE_ALPHABET
from .signaling import (
    Role,
    WireModel,
    JoinMessage,
    LeaveMessage,
    SignalMessage,
    JoinedMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    PeerSignalMessage,
    ErrorMessage,
    RelayMessage,
    safe_parse_json,
    decode_relay_message,
)
from .signal_payload import (
    SessionDescriptionInit,
    IceCandidateInit,
    DescriptionPayload,
    CandidatePayload,
    SignalPayload,
    decode_signal_payload,
)
from .control import (
    PROTOCOL_VERSION,
    MouseMoveEvent,
    MouseButtonEvent,
    MouseWheelEvent,
    KeyEvent,
    InputEvent,
    CaptureInfo,
    HelloMessage,
    HostInfoMessage,
    PingMessage,
    PongMessage,
    InputMessage,
    ControlMessage,
    decode_input_event,
    decode_control_message,
)

__all__ = [
    # Room
    "normalize_room",
    "generate_room_code",
    "ROOM_CODE_ALPHABET",
    # Relay
    "Role",
    "WireModel",
    "JoinMessage",
    "LeaveMessage",
    "SignalMessage",
    "JoinedMessage",
    "PeerJoinedMessage",
    "PeerLeftMessage",
    "PeerSignalMessage",
    "ErrorMessage",
    "RelayMessage",
    "safe_parse_json",
    "decode_relay_message",
    # Signal payload
    "SessionDescriptionInit",
    "IceCandidateInit",
    "DescriptionPayload",
    "CandidatePayload",
    "SignalPayload",
    "decode_signal_payload",
    # Control
    "PROTOCOL_VERSION",
    "MouseMoveEvent",
    "MouseButtonEvent",
    "MouseWheelEvent",
    "KeyEvent",
    "InputEvent",
    "CaptureInfo",
    "HelloMessage",
    "HostInfoMessage",
    "PingMessage",
    "PongMessage",
    "InputMessage",
    "ControlMessage",
    "decode_input_event",
    "decode_control_message",
]
