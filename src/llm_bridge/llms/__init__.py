# src/llm_bridge/llms/__init__.py

"""LLM client layer for llm-bridge.

Provides one operation surface over Claude-style and OpenAI-style HTTP
APIs.

Design principles:
- Uniform: Both providers satisfy the same LLMClient protocol
- Transport only: Retries only on classified-retryable transport errors
- Budgeted: Each client enforces its own session token budget
- No leakage: Provider payloads only surface through LLMResponse.raw

Example:
    >>> from llm_bridge.llms import create_llm_client, LLMConfig, Message, Role
    >>>
    >>> config = LLMConfig(provider="anthropic")
    >>> client = create_llm_client(config)
    >>>
    >>> response = await client.send_message(
    ...     [Message(role=Role.USER, content="Hello!")]
    ... )
    >>> print(response.content)
"""

from .base import (
    LLMClient,
    LLMResponse,
    Message,
    RequestOptions,
    ResolvedRequest,
    Role,
    Usage,
    resolve_request,
)
from ._transport import TextStream
from .config import LLMConfig, load_config
from .factory import create_llm_client, resolve_provider

__all__ = [
    # Factory
    "create_llm_client",
    "resolve_provider",
    # Protocol
    "LLMClient",
    # Config
    "LLMConfig",
    "load_config",
    # Types
    "Message",
    "Role",
    "RequestOptions",
    "ResolvedRequest",
    "LLMResponse",
    "Usage",
    "TextStream",
    "resolve_request",
]
