from . import names
from .base import (
    EventHook,
    MetricsHook,
    NoOpEventHook,
    NoOpMetricsHook,
    RequestInfo,
    redact_headers,
)

__all__ = [
    "EventHook",
    "MetricsHook",
    "NoOpEventHook",
    "NoOpMetricsHook",
    "RequestInfo",
    "names",
    "redact_headers",
]
