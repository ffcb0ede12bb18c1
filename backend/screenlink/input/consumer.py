"""호스트 측 입력 소비자.

데이터 채널로 받은 input 배치를 사용자가 원격 제어를 허용한 동안에만
주입 서비스로 넘깁니다. 주입은 기다리지 않고(fire-and-forget) 백그라운드
태스크로 실행되며, 세션당 첫 번째 실패만 오류로 알립니다.
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from ..protocol import CaptureInfo, InputMessage
from .injection import InjectionService

logger = logging.getLogger(__name__)

INJECTION_FAILED_MESSAGE = "Input injection failed (check OS permissions)"


class InputConsumer:
    """원격 입력 배치를 주입 서비스로 전달합니다.

    Attributes:
        injector (InjectionService): OS 입력 주입 서비스
        allow_control (bool): 원격 제어 허용 여부 (기본 False)
        on_error_callback (Optional[Callable]): 주입 실패 알림 (message, cause)

    Note:
        - allow_control 이 꺼져 있거나 캡처 해상도를 모르면 배치를 버립니다
        - 주입 실패 알림은 reset() 전까지 한 번만 발생합니다
    """

    def __init__(
        self,
        injector: InjectionService,
        capture_info_getter: Callable[[], Optional[CaptureInfo]],
        on_error_callback: Optional[Callable[[str, Exception], None]] = None,
    ):
        self.injector = injector
        self.allow_control = False
        self.on_error_callback = on_error_callback
        self._get_capture_info = capture_info_getter
        self._error_reported = False
        # GC 방지를 위해 실행 중인 주입 태스크 보관
        self._tasks: Set[asyncio.Task] = set()

    def set_allow_control(self, allowed: bool) -> None:
        self.allow_control = allowed
        logger.info(f"[Input] 원격 제어 {'허용' if allowed else '차단'}")

    def handle_batch(self, message: InputMessage) -> bool:
        """input 메시지를 주입 서비스로 넘깁니다.

        Returns:
            bool: 주입 태스크를 시작했으면 True
        """
        if not self.allow_control:
            return False

        capture = self._get_capture_info()
        if capture is None or capture.width <= 0 or capture.height <= 0:
            return False

        if not message.events:
            return False

        task = asyncio.create_task(
            self._inject(list(message.events), capture.width, capture.height)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _inject(self, events, capture_width: int, capture_height: int) -> None:
        try:
            await self.injector.inject(events, capture_width, capture_height)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._error_reported:
                logger.debug(f"[Input] 주입 실패 (알림 생략): {e}")
                return
            self._error_reported = True
            logger.error(f"[Input] 입력 주입 실패: {type(e).__name__}: {e}")
            if self.on_error_callback:
                self.on_error_callback(INJECTION_FAILED_MESSAGE, e)

    async def wait_pending(self) -> None:
        """실행 중인 주입 태스크가 모두 끝날 때까지 기다립니다."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def reset(self) -> None:
        """새 세션을 위해 실행 중인 주입을 취소하고 실패 알림 상태를 초기화합니다."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._error_reported = False
