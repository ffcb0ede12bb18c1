"""미디어 트랙 어댑터.

호스트 측 화면 캡처 소스와 클라이언트 측 원격 영상 싱크를 제공합니다.

Classes:
    CaptureDevice: 캡처 장치 인터페이스 (Protocol)
    MediaPlayerCapture: aiortc MediaPlayer(ffmpeg) 기반 화면 캡처
    RemoteVideoSink: 수신 영상 트랙 소비 및 해상도 추적
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import MediaStreamError

from ..protocol import CaptureInfo

logger = logging.getLogger(__name__)


class CaptureError(Exception):
    """화면 캡처 시작 실패 (취소, 권한 거부, 장치 없음 등)."""


@dataclass
class CaptureHandle:
    """획득한 캡처 스트림과 획득 시점의 해상도 정보."""

    track: MediaStreamTrack
    info: CaptureInfo


class CaptureDevice(Protocol):
    async def open(self) -> CaptureHandle: ...

    async def close(self) -> None: ...


class MediaPlayerCapture:
    """ffmpeg 입력 장치를 aiortc MediaPlayer 로 열어 화면을 캡처합니다.

    Attributes:
        source (str): ffmpeg 입력 (예: ":0.0", "1:none", "desktop")
        format (Optional[str]): ffmpeg 입력 포맷 (x11grab, avfoundation, gdigrab 등)
        options (Dict[str, str]): ffmpeg 입력 옵션 (framerate, video_size 등)

    Note:
        - 해상도는 첫 프레임을 받아 확인합니다 (해당 프레임은 전송되지 않음)
        - frameRate 는 options["framerate"] 가 숫자일 때만 보고합니다

    Examples:
        >>> capture = MediaPlayerCapture(":0.0", format="x11grab",
        ...                              options={"framerate": "30", "video_size": "1920x1080"})
        >>> handle = await capture.open()
        >>> handle.info.width, handle.info.height
        (1920, 1080)
    """

    def __init__(
        self,
        source: str,
        format: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ):
        self.source = source
        self.format = format
        self.options = options or {}
        self._player: Optional[MediaPlayer] = None

    async def open(self) -> CaptureHandle:
        try:
            self._player = MediaPlayer(self.source, format=self.format, options=self.options)
        except Exception as e:
            raise CaptureError(f"capture open failed: {e}") from e

        track = self._player.video
        if track is None:
            await self.close()
            raise CaptureError("capture source has no video stream")

        try:
            frame = await track.recv()
        except MediaStreamError as e:
            await self.close()
            raise CaptureError("capture stream ended before first frame") from e

        info = CaptureInfo(
            width=frame.width,
            height=frame.height,
            frameRate=self._frame_rate(),
        )
        logger.info(
            f"[Capture] 캡처 시작: {info.width}x{info.height}"
            + (f" @ {info.frame_rate:.0f}fps" if info.frame_rate else "")
        )
        return CaptureHandle(track=track, info=info)

    async def close(self) -> None:
        if self._player is None:
            return
        for track in (self._player.video, self._player.audio):
            if track is not None:
                track.stop()
        self._player = None
        logger.info("[Capture] 캡처 종료")

    def _frame_rate(self) -> Optional[float]:
        try:
            return float(self.options["framerate"])
        except (KeyError, ValueError):
            return None


class RemoteVideoSink:
    """수신한 원격 영상 트랙을 소비하며 최신 해상도를 기록합니다.

    포인터 좌표를 영상 좌표로 정규화하려면 실제 영상 크기가 필요하므로,
    프레임을 받을 때마다 width/height 를 갱신합니다.

    Attributes:
        width (int): 마지막 프레임 너비 (프레임 수신 전 0)
        height (int): 마지막 프레임 높이 (프레임 수신 전 0)
        frame_count (int): 수신 프레임 수
        on_frame_callback (Optional[Callable]): 프레임 수신 시 호출 (UI 렌더링용)
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self.frame_count = 0
        self.on_frame_callback: Optional[Callable[[object], None]] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def video_size(self) -> Optional[Tuple[int, int]]:
        if self.width <= 0 or self.height <= 0:
            return None
        return self.width, self.height

    def attach(self, track: MediaStreamTrack) -> None:
        """트랙 소비를 시작합니다. 기존 트랙은 교체됩니다."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._consume(track))

    async def _consume(self, track: MediaStreamTrack) -> None:
        logger.info(f"[WebRTC] 원격 {track.kind} 트랙 컨슈머 시작")
        try:
            while True:
                frame = await track.recv()
                self.frame_count += 1
                self.width = getattr(frame, "width", self.width)
                self.height = getattr(frame, "height", self.height)

                if self.frame_count == 1:
                    logger.info(f"[WebRTC] 첫 프레임 수신: {self.width}x{self.height}")

                if self.on_frame_callback:
                    self.on_frame_callback(frame)
        except MediaStreamError:
            logger.info("[WebRTC] 원격 트랙 종료")
        except asyncio.CancelledError:
            logger.info("[WebRTC] 원격 트랙 컨슈머 태스크 취소됨")
        finally:
            logger.info(f"[WebRTC] 원격 트랙 컨슈머 종료. 총 프레임: {self.frame_count}")

    async def stop(self) -> None:
        """트랙 소비를 중지하고 상태를 초기화합니다."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.width = 0
        self.height = 0
        self.frame_count = 0
