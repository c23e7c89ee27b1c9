"""Request execution core: error classification, retry and stream decoding."""

from .classifier import classify_error, classify_http_error
from .retry import RetryHandler, RetryPolicy
from .streaming import (
    ContentDelta,
    StreamCallbacks,
    StreamComplete,
    StreamEvent,
    StreamingDecoder,
    StreamStart,
    parse_chat_completion_chunk,
    parse_message_event,
)

__all__ = [
    # Classification
    "classify_error",
    "classify_http_error",
    # Retry
    "RetryHandler",
    "RetryPolicy",
    # Streaming
    "ContentDelta",
    "StreamCallbacks",
    "StreamComplete",
    "StreamEvent",
    "StreamStart",
    "StreamingDecoder",
    "parse_chat_completion_chunk",
    "parse_message_event",
]
