# tests/unit/llms/conftest.py

import json
from collections.abc import Callable
from unittest.mock import AsyncMock

import httpx
import pytest


class RecordingTransport:
    """MockTransport wrapper that keeps every request it served."""

    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        # Fresh response per request; the template may be served more than once
        return httpx.Response(
            outcome.status_code, headers=outcome.headers, content=outcome.content
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    @property
    def calls(self) -> int:
        return len(self.requests)

    def payload(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def make_transport() -> Callable[..., RecordingTransport]:
    def _make(*responses: httpx.Response | Exception) -> RecordingTransport:
        return RecordingTransport(list(responses))

    return _make


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def sse() -> Callable[..., bytes]:
    """Encode payload strings as `data:` lines."""

    def _encode(*lines: str) -> bytes:
        return "".join(f"data: {line}\n" for line in lines).encode()

    return _encode
