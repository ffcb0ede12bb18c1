"""WebRTC 세션 모듈.

호스트/클라이언트 세션, 릴레이 연결, ICE 서버 구성, 미디어 트랙 어댑터를 제공합니다.
"""

from .config import SessionSettings, ConnectionConfig, connection_config
from .ice import (
    build_static_servers,
    derive_http_base,
    parse_turn_response,
    fetch_turn_servers,
    resolve_ice_servers,
)
from .relay_client import RelayConnection, RelayConnectionError
from .tracks import (
    CaptureError,
    CaptureHandle,
    CaptureDevice,
    MediaPlayerCapture,
    RemoteVideoSink,
)
from .session import (
    ConnectionStatus,
    SessionError,
    PeerSession,
    create_peer_connection,
    SIGNALING_ERROR_MESSAGE,
    ROOM_REQUIRED_MESSAGE,
    SIGNALING_URL_REQUIRED_MESSAGE,
)
from .host import HostSession, CAPTURE_DENIED_MESSAGE
from .client import ClientSession

__all__ = [
    # Config
    "SessionSettings",
    "ConnectionConfig",
    "connection_config",
    # ICE
    "build_static_servers",
    "derive_http_base",
    "parse_turn_response",
    "fetch_turn_servers",
    "resolve_ice_servers",
    # Relay
    "RelayConnection",
    "RelayConnectionError",
    # Tracks
    "CaptureError",
    "CaptureHandle",
    "CaptureDevice",
    "MediaPlayerCapture",
    "RemoteVideoSink",
    # Session
    "ConnectionStatus",
    "SessionError",
    "PeerSession",
    "create_peer_connection",
    "HostSession",
    "ClientSession",
    "SIGNALING_ERROR_MESSAGE",
    "ROOM_REQUIRED_MESSAGE",
    "SIGNALING_URL_REQUIRED_MESSAGE",
    "CAPTURE_DENIED_MESSAGE",
]
