"""클라이언트 세션 (원격 제어 + answer 측).

클라이언트는 offer 를 만들지 않습니다. 호스트의 offer 에만 answer 하고,
호스트가 만든 control 채널이 열리면 hello 를 보냅니다. 수신 영상은
RemoteVideoSink 가 소비하며, 입력은 InputProducer 가 틱 단위로 전송합니다.
"""

import logging
from typing import Callable, Optional

from ..input import InputProducer
from ..protocol import (
    CaptureInfo,
    ControlMessage,
    HelloMessage,
    HostInfoMessage,
    SessionDescriptionInit,
)
from ..telemetry import ConnectionStats, TelemetrySampler
from .config import SessionSettings, connection_config
from .session import ConnectionStatus, PeerSession
from .tracks import RemoteVideoSink

logger = logging.getLogger(__name__)


class ClientSession(PeerSession):
    """호스트 화면을 보고 입력을 보내는 클라이언트 세션.

    Attributes:
        video_sink (RemoteVideoSink): 원격 영상 싱크
        input (InputProducer): 입력 배처
        host_info (Optional[HostInfoMessage]): 호스트가 보낸 캡처 정보
        stats (Optional[ConnectionStats]): 마지막 텔레메트리 샘플
        on_host_info_callback (Optional[Callable]): host_info 수신 알림
        on_stats_callback (Optional[Callable]): 텔레메트리 샘플 알림

    Examples:
        >>> client = ClientSession(SessionSettings(room="ab12cd"))
        >>> await client.start()
        >>> client.input.pointer_move(400, 300, Viewport(0, 0, 800, 600), client.video_sink.video_size)
    """

    role = "client"
    initial_status = ConnectionStatus.CONNECTING

    def __init__(
        self,
        settings: SessionSettings,
        stats_interval: float = connection_config.STATS_INTERVAL,
        input_interval: float = connection_config.INPUT_FLUSH_INTERVAL,
        **kwargs,
    ):
        super().__init__(settings, **kwargs)
        self.stats_interval = stats_interval
        self.video_sink = RemoteVideoSink()
        self.input = InputProducer(lambda: self.channel, tick_interval=input_interval)
        self.host_info: Optional[HostInfoMessage] = None
        self.stats: Optional[ConnectionStats] = None

        self.on_host_info_callback: Optional[Callable[[HostInfoMessage], None]] = None
        self.on_stats_callback: Optional[Callable[[ConnectionStats], None]] = None

        self._sampler: Optional[TelemetrySampler] = None

    @property
    def capture_info(self) -> Optional[CaptureInfo]:
        return self.host_info.capture if self.host_info else None

    # ============================================================
    # 피어 설정
    # ============================================================

    def _setup_peer(self, pc, generation: int) -> None:
        self._sampler = TelemetrySampler(pc, self.stats_interval, self._on_stats)
        self._sampler.start()

        @pc.on("track")
        def on_track(track):
            if not self._is_current(generation):
                return
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 수신")
            if track.kind == "video":
                self.video_sink.attach(track)

        @pc.on("datachannel")
        def on_datachannel(channel):
            if not self._is_current(generation):
                return
            logger.info(f"[WebRTC] 데이터 채널 수신: {channel.label}")
            self._attach_channel(channel, generation)

    def _on_stats(self, stats: ConnectionStats) -> None:
        self.stats = stats
        logger.debug(f"[Telemetry] {stats.summary()}")
        if self.on_stats_callback:
            self.on_stats_callback(stats)

    def _on_channel_open(self) -> None:
        self.send_control(HelloMessage(role="client"))

    # ============================================================
    # 릴레이 / 제어 메시지
    # ============================================================

    async def _on_remote_description(self, description: SessionDescriptionInit, generation: int) -> None:
        if description.type != "offer":
            logger.debug("[WebRTC] 클라이언트는 answer 를 처리하지 않음, 무시")
            return
        self._request_answer(description)

    def _on_control_message(self, message: ControlMessage) -> None:
        if isinstance(message, HostInfoMessage):
            self.host_info = message
            capture = message.capture
            logger.info(
                f"[WebRTC] host_info 수신: {capture.width}x{capture.height}"
                + (f" @ {capture.frame_rate:.0f}fps" if capture.frame_rate else "")
            )
            if self.on_host_info_callback:
                self.on_host_info_callback(message)

    # ============================================================
    # 정리
    # ============================================================

    def _stop_telemetry(self) -> None:
        sampler, self._sampler = self._sampler, None
        if sampler is not None:
            sampler.stop()
        self.stats = None

    async def _release_media(self) -> None:
        self.input.reset()
        self.input.keyboard_enabled = False
        self.host_info = None
        await self.video_sink.stop()
