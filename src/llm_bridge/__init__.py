# Errors
from .errors import ClassifiedError, ErrorKind, SessionBudgetExceededError

# Conversation
from .conversation import ConversationHistoryManager

# LLMs
from .llms import (
    LLMClient,
    LLMConfig,
    LLMResponse,
    Message,
    RequestOptions,
    Role,
    Usage,
    create_llm_client,
    load_config,
)

# Observability
from .observability import EventHook, MetricsHook, NoOpEventHook, NoOpMetricsHook

# Transport
from .transport import (
    RetryHandler,
    RetryPolicy,
    StreamCallbacks,
    StreamingDecoder,
    classify_error,
    classify_http_error,
)

# Usage
from .usage import TokenUsage, TokenUsageInfo, UsageTracker

__all__ = [
    # Errors
    "ClassifiedError",
    "ErrorKind",
    "SessionBudgetExceededError",
    # Conversation
    "ConversationHistoryManager",
    # LLMs
    "LLMClient",
    "LLMConfig",
    "LLMResponse",
    "Message",
    "RequestOptions",
    "Role",
    "Usage",
    "create_llm_client",
    "load_config",
    # Observability
    "EventHook",
    "MetricsHook",
    "NoOpEventHook",
    "NoOpMetricsHook",
    # Transport
    "RetryHandler",
    "RetryPolicy",
    "StreamCallbacks",
    "StreamingDecoder",
    "classify_error",
    "classify_http_error",
    # Usage
    "TokenUsage",
    "TokenUsageInfo",
    "UsageTracker",
]
