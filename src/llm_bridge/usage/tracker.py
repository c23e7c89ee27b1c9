# src/llm_bridge/usage/tracker.py

"""Token usage accounting and the per-session token budget."""

import logging
import math
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_bridge.llms.base import Usage

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSION_TOKENS = 100_000
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class Pricing:
    """USD per million tokens, per token category."""

    input: float
    output: float
    cache_creation: float = 0.0
    cache_read: float = 0.0


ANTHROPIC_PRICING = Pricing(input=3.0, output=15.0, cache_creation=3.75, cache_read=0.30)
OPENAI_PRICING = Pricing(input=2.5, output=10.0, cache_creation=0.0, cache_read=1.25)


@dataclass(frozen=True)
class TokenUsage:
    """Snapshot of cumulative usage."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    request_count: int = 0
    average_input_tokens: float = 0.0
    average_output_tokens: float = 0.0
    estimated_cost: float = 0.0


@dataclass(frozen=True)
class TokenUsageInfo:
    used: int
    remaining: int
    max: int
    percentage: float


class UsageTracker:
    """Running totals for one client instance.

    Accumulation is a read-modify-write, so it is serialized with a lock in
    case calls arrive from more than one thread.
    """

    def __init__(
        self,
        pricing: Pricing,
        max_session_tokens: int = DEFAULT_MAX_SESSION_TOKENS,
    ) -> None:
        if max_session_tokens <= 0:
            raise ValueError("max_session_tokens must be positive")
        self._pricing = pricing
        self._max_session_tokens = max_session_tokens
        self._lock = threading.Lock()
        self._usage = TokenUsage()

    @property
    def max_session_tokens(self) -> int:
        return self._max_session_tokens

    def track_usage(self, usage: "Usage") -> None:
        with self._lock:
            current = self._usage
            total_input = current.total_input_tokens + usage.input_tokens
            total_output = current.total_output_tokens + usage.output_tokens
            total_cache_creation = (
                current.total_cache_creation_tokens + usage.cache_creation_tokens
            )
            total_cache_read = current.total_cache_read_tokens + usage.cache_read_tokens
            count = current.request_count + 1

            self._usage = TokenUsage(
                total_input_tokens=total_input,
                total_output_tokens=total_output,
                total_cache_creation_tokens=total_cache_creation,
                total_cache_read_tokens=total_cache_read,
                request_count=count,
                average_input_tokens=total_input / count,
                average_output_tokens=total_output / count,
                estimated_cost=self._cost(
                    total_input, total_output, total_cache_creation, total_cache_read
                ),
            )

        logger.debug(
            "Tracked usage: input=%d, output=%d, requests=%d",
            usage.input_tokens,
            usage.output_tokens,
            count,
        )

    def get_usage(self) -> TokenUsage:
        return self._usage

    def total_session_tokens(self) -> int:
        usage = self._usage
        return usage.total_input_tokens + usage.total_output_tokens

    def remaining_session_tokens(self) -> int:
        return max(0, self._max_session_tokens - self.total_session_tokens())

    def session_usage_percentage(self) -> float:
        return min(100.0, self.total_session_tokens() / self._max_session_tokens * 100)

    def is_session_limit_reached(self) -> bool:
        return self.total_session_tokens() >= self._max_session_tokens

    def get_usage_info(self) -> TokenUsageInfo:
        return TokenUsageInfo(
            used=self.total_session_tokens(),
            remaining=self.remaining_session_tokens(),
            max=self._max_session_tokens,
            percentage=self.session_usage_percentage(),
        )

    def reset(self) -> None:
        with self._lock:
            self._usage = TokenUsage()
        logger.info("Token usage reset")

    def _cost(
        self, input_tokens: int, output_tokens: int, cache_creation: int, cache_read: int
    ) -> float:
        p = self._pricing
        return (
            input_tokens / 1_000_000 * p.input
            + output_tokens / 1_000_000 * p.output
            + cache_creation / 1_000_000 * p.cache_creation
            + cache_read / 1_000_000 * p.cache_read
        )


def estimate_tokens(text: str) -> int:
    """Crude estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)
