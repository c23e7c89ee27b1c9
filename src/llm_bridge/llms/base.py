# src/llm_bridge/llms/base.py

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from llm_bridge.observability.base import EventHook, MetricsHook

if TYPE_CHECKING:
    from llm_bridge.transport.streaming import StreamCallbacks
    from llm_bridge.usage.tracker import TokenUsage, TokenUsageInfo

    from .config import LLMConfig


class Role(str, Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Message:
    """A single message in the conversation.

    Immutable. Provider-agnostic. List content (content blocks) is passed
    through to the provider untouched.
    """

    role: Role
    content: str | list[dict[str, Any]]
    tool_call_id: str | None = None  # Required when role=TOOL

    def text(self) -> str:
        """Plain text of the message, joining text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.get("text", "")
            for block in self.content
            if isinstance(block.get("text"), str)
        )


@dataclass(frozen=True)
class Usage:
    """Token usage for a completion."""

    input_tokens: int
    output_tokens: int
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMResponse:
    """Normalized LLM response.

    `raw` keeps the decoded provider payload for pass-through fields
    (tool use blocks and the like).
    """

    id: str
    model: str
    content: str | None
    finish_reason: Literal["stop", "tool_calls", "length", "error"]
    usage: Usage
    latency_ms: float
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class RequestOptions(BaseModel):
    """Per-call overrides. Unset fields fall back to the client defaults.

    Extra fields are provider parameters passed through as-is.
    """

    model_config = ConfigDict(frozen=True, extra="allow", protected_namespaces=())

    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop_sequences: list[str] | None = None
    system: str | None = None


@dataclass(frozen=True)
class ResolvedRequest:
    """One fully merged request. Built fresh for every call."""

    messages: tuple[Message, ...]
    model: str
    max_tokens: int
    temperature: float
    stream: bool = False
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


def resolve_request(
    config: "LLMConfig",
    default_model: str,
    messages: Sequence[Message],
    options: RequestOptions | None = None,
    *,
    stream: bool = False,
) -> ResolvedRequest:
    """Merge instance defaults with call-site options. Options win."""
    merged: dict[str, Any] = {
        "model": config.model or default_model,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }
    if options is not None:
        merged.update(options.model_dump(exclude_none=True))

    return ResolvedRequest(
        messages=tuple(messages),
        model=merged.pop("model"),
        max_tokens=merged.pop("max_tokens"),
        temperature=merged.pop("temperature"),
        stream=stream,
        params=MappingProxyType(merged),
    )


class LLMClient(Protocol):
    """Protocol every provider client satisfies identically.

    Non-streaming sends are retried on transport errors only. Streams are
    retried while connecting, never once deltas have started flowing.
    """

    metrics_hook: MetricsHook
    event_hook: EventHook

    async def send_message(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> LLMResponse:
        """Single completion. Full message list required.

        Raises:
            SessionBudgetExceededError: Budget spent; nothing was sent.
            ClassifiedError: Terminal transport failure after retries.
        """
        ...

    async def send_message_async(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> LLMResponse: ...

    async def stream_message(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
        callbacks: "StreamCallbacks | None" = None,
    ) -> AsyncIterator[str]:
        """Open a stream and return an async iterator of text deltas.

        The returned stream holds the connection until exhausted or closed.
        """
        ...

    async def count_tokens(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> int: ...

    async def validate_context_window(self, messages: Sequence[Message]) -> bool: ...

    def get_token_usage(self) -> "TokenUsage": ...

    def get_token_usage_info(self) -> "TokenUsageInfo": ...

    def reset_token_usage(self) -> None: ...

    async def aclose(self) -> None: ...
