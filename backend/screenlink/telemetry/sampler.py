"""연결 텔레메트리 샘플러.

피어 연결의 getStats() 를 주기적으로 조회하여 RTT, 수신 처리량, FPS 를
계산합니다.

Metrics:
    - RTT (ms): nominated 또는 succeeded 상태 candidate-pair 의 currentRoundTripTime.
      aiortc 는 candidate-pair 통계를 제공하지 않으므로 remote-inbound-rtp 의
      roundTripTime 을 대신 사용합니다.
    - RX (Mbps): 연속 두 샘플 간 누적 수신 바이트 차이 / 경과 시간.
      connected 상태가 된 뒤의 첫 샘플은 기준값만 기록합니다.
    - FPS: inbound-rtp(video) 의 framesPerSecond
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


def _stat(stat: Any, name: str) -> Any:
    """dict 형태와 객체 형태의 통계 항목 모두에서 필드를 읽습니다."""
    if isinstance(stat, dict):
        return stat.get(name)
    return getattr(stat, name, None)


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


@dataclass
class ConnectionStats:
    """한 번의 샘플링 결과."""

    rtt_ms: Optional[float] = None
    rx_mbps: Optional[float] = None
    fps: Optional[float] = None
    state: str = "new"

    def summary(self) -> str:
        """상태 표시줄용 요약 문자열.

        Examples:
            >>> ConnectionStats(rtt_ms=12.4, rx_mbps=8.0, fps=60.0, state="connected").summary()
            'RTT 12ms · RX 8.00Mbps · FPS 60 · State connected'
        """
        bits = []
        if self.rtt_ms is not None:
            bits.append(f"RTT {round(self.rtt_ms)}ms")
        if self.rx_mbps is not None:
            bits.append(f"RX {self.rx_mbps:.2f}Mbps")
        if self.fps is not None:
            bits.append(f"FPS {round(self.fps)}")
        bits.append(f"State {self.state}")
        return " · ".join(bits)


class TelemetrySampler:
    """주기적으로 연결 통계를 샘플링합니다.

    Attributes:
        pc: 샘플링 대상 피어 연결 (getStats(), connectionState 필요)
        interval (float): 샘플링 주기 (초)
        on_sample_callback (Optional[Callable]): 샘플마다 ConnectionStats 전달
        latest (Optional[ConnectionStats]): 마지막 샘플

    Note:
        - 피어 연결이 closed 상태가 되면 스스로 중지합니다
        - getStats() 실패는 해당 주기만 건너뜁니다
    """

    def __init__(
        self,
        pc,
        interval: float = 1.0,
        on_sample_callback: Optional[Callable[[ConnectionStats], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pc = pc
        self.interval = interval
        self.on_sample_callback = on_sample_callback
        self.latest: Optional[ConnectionStats] = None
        self._clock = clock
        self._baseline: Optional[Tuple[float, float]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """샘플링을 시작합니다. 이미 실행 중이면 재시작합니다."""
        self.stop()
        self._baseline = None
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        logger.info(f"[Telemetry] 샘플링 시작 (주기 {self.interval}s)")
        try:
            while True:
                await asyncio.sleep(self.interval)
                if self.pc.connectionState == "closed":
                    logger.info("[Telemetry] 연결 종료됨, 샘플링 중지")
                    return
                try:
                    await self.sample()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug(f"[Telemetry] 통계 조회 실패: {e}")
        except asyncio.CancelledError:
            logger.debug("[Telemetry] 샘플링 태스크 취소됨")

    async def sample(self) -> ConnectionStats:
        report = await self.pc.getStats()
        values = report.values() if isinstance(report, dict) else report
        stats = self.process(values, self._clock())
        self.latest = stats
        if self.on_sample_callback:
            self.on_sample_callback(stats)
        return stats

    def process(self, report: Iterable[Any], now: float) -> ConnectionStats:
        """통계 항목들로부터 ConnectionStats 를 계산하고 처리량 기준값을 갱신합니다.

        Args:
            report: getStats() 결과 항목들
            now: 현재 시각 (초, 단조 증가)
        """
        pair_rtt: Optional[float] = None
        remote_rtt: Optional[float] = None
        video_bytes: Optional[float] = None
        transport_bytes: Optional[float] = None
        fps: Optional[float] = None

        for stat in report:
            kind = _stat(stat, "type")
            if kind == "candidate-pair":
                if _stat(stat, "nominated") is True or _stat(stat, "state") == "succeeded":
                    rtt = _finite_number(_stat(stat, "currentRoundTripTime"))
                    if rtt is not None and rtt > 0:
                        pair_rtt = rtt * 1000
            elif kind == "remote-inbound-rtp":
                rtt = _finite_number(_stat(stat, "roundTripTime"))
                if rtt is not None and rtt > 0:
                    remote_rtt = rtt * 1000
            elif kind == "inbound-rtp" and _stat(stat, "kind") == "video":
                received = _finite_number(_stat(stat, "bytesReceived"))
                if received is not None:
                    video_bytes = received
                frames = _finite_number(_stat(stat, "framesPerSecond"))
                if frames is not None:
                    fps = frames
            elif kind == "transport":
                received = _finite_number(_stat(stat, "bytesReceived"))
                if received is not None:
                    transport_bytes = received

        total_bytes = video_bytes if video_bytes is not None else transport_bytes
        state = str(self.pc.connectionState)
        rx_mbps: Optional[float] = None
        if state != "connected":
            # 연결 수립 전 바이트는 기준값으로 쓰지 않음
            self._baseline = None
        elif total_bytes is not None:
            if self._baseline is not None:
                last_ts, last_bytes = self._baseline
                dt = now - last_ts
                d_bytes = total_bytes - last_bytes
                if dt > 0 and d_bytes > 0:
                    rx_mbps = d_bytes * 8 / dt / 1_000_000
            self._baseline = (now, total_bytes)

        return ConnectionStats(
            rtt_ms=pair_rtt if pair_rtt is not None else remote_rtt,
            rx_mbps=rx_mbps,
            fps=fps,
            state=state,
        )
