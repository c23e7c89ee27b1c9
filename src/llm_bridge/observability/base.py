from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from llm_bridge.llms.base import LLMResponse

REDACTED = "***"
SENSITIVE_HEADERS = frozenset({"x-api-key", "authorization"})


class MetricsHook(Protocol):
    def record_latency(
        self,
        name: str,
        value_ms: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def increment(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def record_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...


class NoOpMetricsHook:
    def record_latency(
        self, name: str, value_ms: float, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def increment(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def record_gauge(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        pass


@dataclass(frozen=True)
class RequestInfo:
    """An outgoing transport attempt. Credential headers are redacted."""

    url: str
    method: str
    headers: Mapping[str, str] = field(default_factory=dict)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


class EventHook(Protocol):
    """Listener for client lifecycle events."""

    def on_request(self, request: RequestInfo) -> None: ...

    def on_response(self, response: "LLMResponse") -> None: ...


class NoOpEventHook:
    def on_request(self, request: RequestInfo) -> None:
        pass

    def on_response(self, response: "LLMResponse") -> None:
        pass
