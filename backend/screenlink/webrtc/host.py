"""호스트 세션 (화면 공유 + offer 측).

호스트는 화면을 캡처해 영상 트랙으로 보내고, "control" 데이터 채널을
생성하며, 상대 피어가 룸에 있으면 offer 를 만듭니다. 클라이언트가 보낸
input 배치는 원격 제어가 허용된 동안에만 주입 서비스로 전달합니다.

Workflow:
    1. 캡처 시작 (실패 시 error: "Screen capture was cancelled or denied")
    2. ICE 서버 구성 → RTCPeerConnection 생성 → 트랙 추가 → control 채널 생성
    3. 릴레이 연결 → join(role=host) → waiting_for_peer
    4. joined{peerPresent: true} 또는 peer_joined → offer
    5. 채널 열림 → hello + host_info 전송
"""

import logging
from typing import Callable, Optional

from aiortc import RTCSessionDescription

from ..input import InjectionService, InputConsumer, LoggingInjectionService
from ..protocol import (
    CaptureInfo,
    ControlMessage,
    HelloMessage,
    HostInfoMessage,
    InputMessage,
    JoinedMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    SessionDescriptionInit,
)
from .config import SessionSettings, connection_config
from .session import ConnectionStatus, PeerSession, SessionError
from .tracks import CaptureDevice, CaptureHandle

logger = logging.getLogger(__name__)

CAPTURE_DENIED_MESSAGE = "Screen capture was cancelled or denied"


class HostSession(PeerSession):
    """화면을 공유하고 원격 입력을 받는 호스트 세션.

    Attributes:
        capture_device (CaptureDevice): 화면 캡처 장치
        input_consumer (InputConsumer): 원격 입력 소비자
        capture_info (Optional[CaptureInfo]): 현재 캡처 해상도
        peer_present (bool): 상대 피어가 룸에 있는지 여부

    Examples:
        >>> settings = SessionSettings(room="AB12CD")
        >>> host = HostSession(settings, MediaPlayerCapture(":0.0", format="x11grab"))
        >>> host.allow_control = True
        >>> await host.start()
        >>> ...
        >>> await host.stop()
    """

    role = "host"
    initial_status = ConnectionStatus.STARTING

    def __init__(
        self,
        settings: SessionSettings,
        capture_device: CaptureDevice,
        injector: Optional[InjectionService] = None,
        **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.capture_device = capture_device
        self.capture_info: Optional[CaptureInfo] = None
        self.peer_present = False
        self.on_peer_present_callback: Optional[Callable[[bool], None]] = None

        self._capture: Optional[CaptureHandle] = None
        self.input_consumer = InputConsumer(
            injector or LoggingInjectionService(),
            lambda: self.capture_info,
            self._on_injection_error,
        )

    @property
    def allow_control(self) -> bool:
        return self.input_consumer.allow_control

    @allow_control.setter
    def allow_control(self, allowed: bool) -> None:
        self.input_consumer.set_allow_control(allowed)

    def _set_peer_present(self, present: bool) -> None:
        self.peer_present = present
        if self.on_peer_present_callback:
            self.on_peer_present_callback(present)

    def _on_injection_error(self, message: str, cause: Exception) -> None:
        self._set_error(SessionError(message, cause))

    # ============================================================
    # 미디어 / 피어 설정
    # ============================================================

    async def _acquire_media(self, generation: int) -> bool:
        try:
            handle = await self.capture_device.open()
        except Exception as e:
            if self._is_current(generation):
                logger.error(f"[WebRTC] 화면 캡처 실패: {type(e).__name__}: {e}")
                self._fail(CAPTURE_DENIED_MESSAGE, e)
            return False

        if not self._is_current(generation):
            await self.capture_device.close()
            return False

        self._capture = handle
        self.capture_info = handle.info
        return True

    def _setup_peer(self, pc, generation: int) -> None:
        if self._capture is not None:
            pc.addTrack(self._capture.track)
        channel = pc.createDataChannel(connection_config.CONTROL_CHANNEL_LABEL, ordered=True)
        self._attach_channel(channel, generation)

    def _on_channel_open(self) -> None:
        self.send_control(HelloMessage(role="host"))
        if self.capture_info is not None:
            self.send_control(HostInfoMessage(capture=self.capture_info))

    # ============================================================
    # 릴레이 이벤트
    # ============================================================

    def _on_joined(self, message: JoinedMessage) -> None:
        self._set_peer_present(message.peer_present)
        if message.peer_present:
            self._request_offer()

    def _on_peer_joined(self, message: PeerJoinedMessage) -> None:
        self._set_peer_present(True)
        self._request_offer()

    def _on_peer_left(self, message: PeerLeftMessage) -> None:
        self._set_peer_present(False)
        self._set_status(ConnectionStatus.WAITING_FOR_PEER)

    async def _on_remote_description(self, description: SessionDescriptionInit, generation: int) -> None:
        pc = self.pc
        if pc is None:
            return
        try:
            await pc.setRemoteDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
            logger.info(f"[WebRTC] remote {description.type} 적용 완료")
        except Exception as e:
            if self._is_current(generation):
                logger.warning(f"[WebRTC] remote description 적용 실패 (무시): {type(e).__name__}: {e}")

    # ============================================================
    # 제어 메시지
    # ============================================================

    def _on_control_message(self, message: ControlMessage) -> None:
        if isinstance(message, InputMessage):
            self.input_consumer.handle_batch(message)

    # ============================================================
    # 정리
    # ============================================================

    async def _release_media(self) -> None:
        self.input_consumer.reset()
        self.capture_info = None
        if self.peer_present:
            self._set_peer_present(False)
        if self._capture is not None:
            self._capture = None
            await self.capture_device.close()
