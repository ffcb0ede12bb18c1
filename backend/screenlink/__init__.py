"""screenlink - P2P 화면 공유 및 원격 제어.

호스트는 화면을 WebRTC 영상으로 공유하고, 클라이언트는 같은 룸 코드로
접속해 영상을 보며 데이터 채널로 마우스/키보드 입력을 보냅니다.
시그널링 릴레이는 협상 메시지만 중계합니다.

Modules:
    protocol: 릴레이/시그널/제어 메시지 코덱
    webrtc: 세션 협상, ICE 구성, 릴레이 연결, 미디어 트랙
    input: 입력 배칭, 좌표 정규화, 입력 주입
    telemetry: 연결 통계 샘플링
"""

from .protocol import normalize_room, generate_room_code
from .webrtc import (
    SessionSettings,
    ConnectionStatus,
    SessionError,
    HostSession,
    ClientSession,
    MediaPlayerCapture,
    CaptureError,
    RelayConnectionError,
)
from .input import Viewport, LoggingInjectionService
from .telemetry import ConnectionStats

__all__ = [
    "normalize_room",
    "generate_room_code",
    "SessionSettings",
    "ConnectionStatus",
    "SessionError",
    "HostSession",
    "ClientSession",
    "MediaPlayerCapture",
    "CaptureError",
    "RelayConnectionError",
    "Viewport",
    "LoggingInjectionService",
    "ConnectionStats",
]
