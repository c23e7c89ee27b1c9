# src/llm_bridge/transport/retry.py

"""Retry with full-jitter exponential backoff.

Only classified-retryable failures (and raw connectivity faults) are
retried. A rate limit error carrying Retry-After overrides the backoff.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from llm_bridge.errors import ClassifiedError, ErrorKind

from .classifier import is_connectivity_fault

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 522, 524})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Durations are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    respect_retry_after: bool = True
    max_retry_after_delay: float = 60.0
    retryable_status_codes: frozenset[int] = field(
        default=DEFAULT_RETRYABLE_STATUS_CODES
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")


def should_retry(error: BaseException) -> bool:
    if isinstance(error, ClassifiedError):
        return error.is_retryable
    return is_connectivity_fault(error)


class _BackoffBase:
    """Backoff base that grows after every retried attempt."""

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy
        self.delay = policy.initial_delay

    def advance(self) -> None:
        self.delay = min(self.delay * self._policy.backoff_factor, self._policy.max_delay)


class RetryHandler:
    """Executes async operations with retry.

    The random draw and the sleep are injectable so tests can pin jitter
    and skip real waiting.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        rand: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[BaseException, int], None] | None = None,
    ) -> None:
        self.policy = policy
        self._rand = rand
        self._sleep = sleep
        self._on_retry = on_retry

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` until it succeeds or the attempt budget is spent.

        The last error is re-raised unchanged.
        """
        base = _BackoffBase(self.policy)

        def wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = self.compute_delay(error, retry_state.attempt_number)
            base.advance()
            return delay

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            sleep_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.3fs (backoff base %.3fs)",
                retry_state.attempt_number,
                self.policy.max_attempts,
                error,
                sleep_s,
                base.delay,
            )
            if self._on_retry is not None and error is not None:
                self._on_retry(error, retry_state.attempt_number)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            retry=retry_if_exception(should_retry),
            wait=wait,
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        ):
            with attempt:
                return await operation()

    def compute_delay(self, error: BaseException | None, attempt: int) -> float:
        """Delay before the retry that follows failed attempt `attempt` (1-based)."""
        if (
            isinstance(error, ClassifiedError)
            and error.kind is ErrorKind.RATE_LIMIT
            and error.retry_after is not None
            and self.policy.respect_retry_after
        ):
            return min(float(error.retry_after), self.policy.max_retry_after_delay)

        exponential = self.policy.initial_delay * self.policy.backoff_factor ** (attempt - 1)
        ceiling = min(exponential, self.policy.max_delay)
        return self._rand() * ceiling
