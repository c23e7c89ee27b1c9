# src/llm_bridge/errors.py

"""Error taxonomy for the transport layer.

Every failure that crosses the HTTP boundary is a ClassifiedError. The
kind is a closed set and retryability is derived from it, never stored.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of transport failure kinds."""

    NETWORK = "network"
    CLIENT = "client"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"


def is_retryable(kind: ErrorKind) -> bool:
    """Retryability contract for each error kind."""
    match kind:
        case ErrorKind.NETWORK | ErrorKind.SERVER | ErrorKind.RATE_LIMIT:
            return True
        case ErrorKind.CLIENT:
            return False
    raise ValueError(f"Unknown error kind: {kind!r}")


class ClassifiedError(Exception):
    """A transport failure tagged with its kind.

    Immutable. Build instances with the kind-specific constructors
    (`network`, `client`, `server`, `rate_limit`).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        if retry_after is not None and kind is not ErrorKind.RATE_LIMIT:
            raise ValueError("retry_after is only valid for rate limit errors")
        super().__init__(message)
        self._kind = kind
        self._message = message
        self._status_code = status_code
        self._context = dict(context) if context else None
        self._retry_after = retry_after

    @classmethod
    def network(
        cls, message: str, context: dict[str, Any] | None = None
    ) -> "ClassifiedError":
        return cls(ErrorKind.NETWORK, message, context=context)

    @classmethod
    def client(
        cls,
        message: str,
        status_code: int,
        context: dict[str, Any] | None = None,
    ) -> "ClassifiedError":
        return cls(ErrorKind.CLIENT, message, status_code=status_code, context=context)

    @classmethod
    def server(
        cls,
        message: str,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
    ) -> "ClassifiedError":
        return cls(ErrorKind.SERVER, message, status_code=status_code, context=context)

    @classmethod
    def rate_limit(
        cls,
        message: str,
        retry_after: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> "ClassifiedError":
        return cls(
            ErrorKind.RATE_LIMIT,
            message,
            status_code=429,
            context=context,
            retry_after=retry_after,
        )

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def context(self) -> dict[str, Any] | None:
        return dict(self._context) if self._context else None

    @property
    def retry_after(self) -> int | None:
        """Server-supplied wait hint in seconds (rate limit errors only)."""
        return self._retry_after

    @property
    def is_retryable(self) -> bool:
        return is_retryable(self._kind)

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self._kind.value!r}, message={self._message!r}, "
            f"status_code={self._status_code!r}, retry_after={self._retry_after!r})"
        )


class SessionBudgetExceededError(Exception):
    """Raised before dispatch when the session token budget is spent.

    Not part of the transport taxonomy: it never reaches the network.
    """

    def __init__(self, max_tokens: int, used_tokens: int) -> None:
        super().__init__(
            f"Session token limit of {max_tokens} has been reached. "
            f"Current usage: {used_tokens} tokens. "
            "Reset token usage with reset_token_usage() to continue."
        )
        self.max_tokens = max_tokens
        self.used_tokens = used_tokens
