"""클라이언트 측 입력 배처.

포인터/버튼/휠/키 이벤트를 모아 틱(기본 1/60초)마다 하나의 input 메시지로
데이터 채널에 전송합니다.

Note:
    - 포인터 이동은 하나의 슬롯만 유지하며 새 이동이 이전 이동을 덮어씁니다
      (틱당 최대 1개의 mouse_move)
    - 버튼/휠/키 이벤트는 순서대로 큐에 쌓입니다
    - 플러시 시점에 채널이 열려있지 않으면 큐를 버립니다
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Set, Tuple

from ..protocol import (
    InputEvent,
    InputMessage,
    KeyEvent,
    MouseButtonEvent,
    MouseMoveEvent,
    MouseWheelEvent,
)
from .coords import Viewport, normalize_pointer

logger = logging.getLogger(__name__)

# 원격으로 전달하지 않는 키 (로컬 키보드 캡처 해제용)
RESERVED_KEY_CODE = "Escape"


def clamp_button(button: int) -> int:
    """0(좌), 1(중), 2(우) 이외의 버튼은 0 으로 취급합니다."""
    return button if button in (0, 1, 2) else 0


class InputProducer:
    """입력 이벤트를 틱 단위로 모아 전송하는 배처.

    Attributes:
        tick_interval (float): 플러시 주기 (초)
        keyboard_enabled (bool): 키보드 캡처 활성화 여부

    Examples:
        >>> producer = InputProducer(lambda: session.channel, tick_interval=1 / 60)
        >>> producer.pointer_move(400, 300, Viewport(0, 0, 800, 600), (1920, 1080))
        >>> producer.mouse_button(0, True)
        >>> # 다음 틱에 {"t": "input", "events": [mouse_button, mouse_move]} 전송
    """

    def __init__(
        self,
        channel_getter: Callable[[], Optional[Any]],
        tick_interval: float = 1 / 60,
    ):
        self._get_channel = channel_getter
        self.tick_interval = tick_interval
        self.keyboard_enabled = False

        self._queue: List[InputEvent] = []
        self._last_move: Optional[MouseMoveEvent] = None
        self._held_keys: Set[str] = set()
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> int:
        """다음 플러시에 전송될 이벤트 수."""
        return len(self._queue) + (1 if self._last_move is not None else 0)

    def queue_input(self, event: InputEvent) -> None:
        self._queue.append(event)
        self.schedule_flush()

    def pointer_move(
        self,
        client_x: float,
        client_y: float,
        viewport: Viewport,
        video_size: Optional[Tuple[int, int]] = None,
    ) -> None:
        coords = normalize_pointer(client_x, client_y, viewport, video_size)
        if coords is None:
            return
        self._last_move = MouseMoveEvent(x=coords[0], y=coords[1])
        self.schedule_flush()

    def mouse_button(
        self,
        button: int,
        down: bool,
        position: Optional[Tuple[float, float]] = None,
        viewport: Optional[Viewport] = None,
        video_size: Optional[Tuple[int, int]] = None,
    ) -> None:
        """버튼 이벤트를 큐에 넣습니다. 위치가 주어지면 포인터를 먼저 갱신합니다."""
        if position is not None and viewport is not None:
            self.pointer_move(position[0], position[1], viewport, video_size)
        self.queue_input(MouseButtonEvent(button=clamp_button(button), down=down))

    def mouse_wheel(
        self,
        dx: float,
        dy: float,
        position: Optional[Tuple[float, float]] = None,
        viewport: Optional[Viewport] = None,
        video_size: Optional[Tuple[int, int]] = None,
    ) -> None:
        if position is not None and viewport is not None:
            self.pointer_move(position[0], position[1], viewport, video_size)
        self.queue_input(MouseWheelEvent(dx=dx, dy=dy))

    def key(
        self,
        code: str,
        down: bool,
        repeat: bool = False,
        alt: bool = False,
        ctrl: bool = False,
        meta: bool = False,
        shift: bool = False,
    ) -> bool:
        """키 이벤트를 큐에 넣습니다.

        Returns:
            bool: 큐에 들어갔으면 True. 키보드 캡처가 꺼져 있거나, Escape 이거나,
                반복 key-down 이면 False
        """
        if not self.keyboard_enabled or not code or code == RESERVED_KEY_CODE:
            return False

        if down:
            if repeat or code in self._held_keys:
                return False
            self._held_keys.add(code)
        else:
            self._held_keys.discard(code)

        self.queue_input(KeyEvent(
            code=code, down=down, alt=alt, ctrl=ctrl, meta=meta, shift=shift,
        ))
        return True

    def set_keyboard_enabled(self, enabled: bool) -> None:
        self.keyboard_enabled = enabled
        if not enabled:
            self._held_keys.clear()
        logger.info(f"[Input] 키보드 캡처 {'활성화' if enabled else '비활성화'}")

    def schedule_flush(self) -> None:
        """다음 틱에 플러시를 예약합니다. 이미 예약되어 있으면 무시합니다."""
        if self._flush_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self.tick_interval, self._on_tick)

    def _on_tick(self) -> None:
        self._flush_handle = None
        self.flush()

    def flush(self) -> bool:
        """대기 중인 이벤트를 하나의 input 메시지로 전송합니다.

        Returns:
            bool: 메시지를 전송했으면 True
        """
        channel = self._get_channel()
        if channel is None or channel.readyState != "open":
            if self._queue:
                logger.debug(f"[Input] 채널 닫힘, 입력 {len(self._queue)}개 버림")
            self._queue = []
            return False

        if self._last_move is not None:
            self._queue.append(self._last_move)
            self._last_move = None
        if not self._queue:
            return False

        message = InputMessage(events=self._queue)
        self._queue = []
        channel.send(message.to_json())
        return True

    def reset(self) -> None:
        """예약된 플러시를 취소하고 모든 대기 상태를 비웁니다."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._queue = []
        self._last_move = None
        self._held_keys.clear()
