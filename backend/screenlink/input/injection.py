"""입력 주입 서비스 인터페이스.

호스트는 원격 입력 이벤트를 OS 입력으로 주입하는 외부 서비스에 배치 단위로
전달합니다. 실제 OS 주입 백엔드는 이 패키지 밖에서 제공되며, 여기서는
인터페이스와 좌표 역정규화 도우미, 로그만 남기는 dry-run 구현을 제공합니다.
"""

import logging
from typing import List, Protocol, Sequence, Tuple

from ..protocol import InputEvent, KeyEvent, MouseButtonEvent, MouseMoveEvent, MouseWheelEvent
from .coords import clamp01

logger = logging.getLogger(__name__)

MOUSE_BUTTON_NAMES = {0: "left", 1: "middle", 2: "right"}

# 휠 델타(px) → 스크롤 라인 변환 비율
WHEEL_PIXELS_PER_LINE = 30.0


class InjectionError(Exception):
    """입력 주입 실패 (OS 권한 부족 등)."""


class InjectionService(Protocol):
    async def inject(
        self,
        events: Sequence[InputEvent],
        capture_width: int,
        capture_height: int,
    ) -> None: ...


def denormalize(x: float, y: float, capture_width: int, capture_height: int) -> Tuple[int, int]:
    """정규화 좌표를 캡처 화면 픽셀 좌표로 변환합니다.

    Examples:
        >>> denormalize(0.5, 1.0, 1920, 1080)
        (960, 1079)
    """
    max_x = max(capture_width - 1, 0)
    max_y = max(capture_height - 1, 0)
    return round(clamp01(x) * max_x), round(clamp01(y) * max_y)


def wheel_to_lines(delta: float) -> int:
    """휠 델타(px)를 스크롤 라인 수로 변환합니다."""
    return round(delta / WHEEL_PIXELS_PER_LINE)


def describe_events(
    events: Sequence[InputEvent],
    capture_width: int,
    capture_height: int,
) -> List[str]:
    """주입될 동작을 사람이 읽을 수 있는 문자열 목록으로 변환합니다."""
    actions: List[str] = []
    for event in events:
        if isinstance(event, MouseMoveEvent):
            px, py = denormalize(event.x, event.y, capture_width, capture_height)
            actions.append(f"move({px},{py})")
        elif isinstance(event, MouseButtonEvent):
            name = MOUSE_BUTTON_NAMES.get(event.button, "left")
            actions.append(f"{name}_{'down' if event.down else 'up'}")
        elif isinstance(event, MouseWheelEvent):
            sx, sy = wheel_to_lines(event.dx), wheel_to_lines(event.dy)
            if sx or sy:
                actions.append(f"scroll({sx},{sy})")
        elif isinstance(event, KeyEvent):
            actions.append(f"key_{'down' if event.down else 'up'}({event.code})")
    return actions


class LoggingInjectionService:
    """실제로 주입하지 않고 동작만 로그로 남기는 주입 서비스 (dry-run)."""

    async def inject(
        self,
        events: Sequence[InputEvent],
        capture_width: int,
        capture_height: int,
    ) -> None:
        if capture_width <= 0 or capture_height <= 0:
            return
        for action in describe_events(events, capture_width, capture_height):
            logger.info(f"[Input] (dry-run) {action}")
