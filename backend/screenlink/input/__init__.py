"""입력 파이프라인 모듈.

클라이언트 측 입력 배칭(producer), 호스트 측 소비/주입(consumer),
좌표 정규화와 주입 서비스 인터페이스를 제공합니다.
"""

from .coords import Viewport, clamp01, normalize_pointer
from .injection import (
    InjectionError,
    InjectionService,
    LoggingInjectionService,
    denormalize,
    describe_events,
    wheel_to_lines,
)
from .producer import InputProducer, clamp_button
from .consumer import InputConsumer, INJECTION_FAILED_MESSAGE

__all__ = [
    # Coordinates
    "Viewport",
    "clamp01",
    "normalize_pointer",
    # Injection
    "InjectionError",
    "InjectionService",
    "LoggingInjectionService",
    "denormalize",
    "describe_events",
    "wheel_to_lines",
    # Producer / Consumer
    "InputProducer",
    "clamp_button",
    "InputConsumer",
    "INJECTION_FAILED_MESSAGE",
]
