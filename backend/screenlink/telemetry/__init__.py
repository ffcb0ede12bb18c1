"""연결 텔레메트리 모듈."""

from .sampler import ConnectionStats, TelemetrySampler

__all__ = ["ConnectionStats", "TelemetrySampler"]
