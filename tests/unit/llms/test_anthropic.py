# tests/unit/llms/test_anthropic.py

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from llm_bridge.errors import ClassifiedError, ErrorKind, SessionBudgetExceededError
from llm_bridge.llms.anthropic import AnthropicLLMClient
from llm_bridge.llms.base import Message, RequestOptions, Role
from llm_bridge.llms.config import LLMConfig
from llm_bridge.transport.retry import RetryHandler
from llm_bridge.transport.streaming import StreamCallbacks


def _message_response(
    text: str = "Hello! How can I help you?",
    input_tokens: int = 10,
    output_tokens: int = 8,
    stop_reason: str = "end_turn",
) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "msg_123",
            "type": "message",
            "role": "assistant",
            "model": "claude-sonnet-4-20250514",
            "content": [{"type": "text", "text": text}],
            "stop_reason": stop_reason,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": None,
                "cache_read_input_tokens": 4,
            },
        },
    )


def _client(
    transport: Any,
    sleep: AsyncMock,
    **config_kwargs,
) -> AnthropicLLMClient:
    config = LLMConfig(provider="anthropic", api_key="test-key", **config_kwargs)
    return AnthropicLLMClient(
        config,
        http_client=transport.client(),
        retry_handler=RetryHandler(config.retry_policy(), rand=lambda: 0.5, sleep=sleep),
        metrics_hook=MagicMock(),
        event_hook=MagicMock(),
    )


USER_HELLO = [Message(role=Role.USER, content="Hello!")]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_message_basic(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response())
        client = _client(transport, no_sleep)

        response = await client.send_message(USER_HELLO)

        assert response.content == "Hello! How can I help you?"
        assert response.finish_reason == "stop"
        assert response.id == "msg_123"
        assert response.usage.total_tokens == 18
        assert response.usage.cache_creation_tokens == 0
        assert response.usage.cache_read_tokens == 4
        assert response.latency_ms >= 0

        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert transport.payload() == {
            "model": "claude-sonnet-4-20250514",
            "max_tokens": 16384,
            "temperature": 1.0,
            "messages": [{"role": "user", "content": "Hello!"}],
        }

    @pytest.mark.asyncio
    async def test_per_call_options_override_defaults(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response())
        client = _client(transport, no_sleep, temperature=0.2)

        await client.send_message(
            USER_HELLO,
            RequestOptions(model="claude-opus-4-20250514", max_tokens=100, top_k=5),
        )
        await client.send_message(USER_HELLO)

        first, second = transport.payload(0), transport.payload(1)
        assert first["model"] == "claude-opus-4-20250514"
        assert first["max_tokens"] == 100
        assert first["temperature"] == 0.2
        assert first["top_k"] == 5
        # Instance defaults are untouched by the previous call
        assert second["model"] == "claude-sonnet-4-20250514"
        assert second["max_tokens"] == 16384
        assert "top_k" not in second

    @pytest.mark.asyncio
    async def test_system_message_lifted(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response(), _message_response())
        client = _client(transport, no_sleep)
        messages = [
            Message(role=Role.SYSTEM, content="You are helpful."),
            Message(role=Role.USER, content="Hello"),
        ]

        await client.send_message(messages)
        await client.send_message(messages, RequestOptions(system="Be terse."))

        assert transport.payload(0)["system"] == "You are helpful."
        assert transport.payload(0)["messages"] == [{"role": "user", "content": "Hello"}]
        assert transport.payload(1)["system"] == "Be terse."

    def test_tool_result_conversion(self) -> None:
        client = AnthropicLLMClient(LLMConfig(api_key="test-key"))

        converted = client._convert_messages(
            [Message(role=Role.TOOL, content="22°C sunny", tool_call_id="toolu_123")]
        )

        assert converted[0]["role"] == "user"
        assert converted[0]["content"][0]["type"] == "tool_result"
        assert converted[0]["content"][0]["tool_use_id"] == "toolu_123"
        assert converted[0]["content"][0]["content"] == "22°C sunny"

    @pytest.mark.asyncio
    async def test_tool_use_and_max_tokens_finish_reasons(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        tool_use = httpx.Response(
            200,
            json={
                "id": "msg_1",
                "model": "m",
                "content": [
                    {"type": "tool_use", "id": "toolu_1", "name": "w", "input": {}}
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 1, "output_tokens": 1},
            },
        )
        transport = make_transport(tool_use, _message_response(stop_reason="max_tokens"))
        client = _client(transport, no_sleep)

        first = await client.send_message(USER_HELLO)
        second = await client.send_message(USER_HELLO)

        assert first.finish_reason == "tool_calls"
        assert first.content is None
        assert first.raw["content"][0]["id"] == "toolu_1"
        assert second.finish_reason == "length"

    @pytest.mark.asyncio
    async def test_tracks_usage_and_notifies_hooks(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response(input_tokens=100, output_tokens=50))
        client = _client(transport, no_sleep)

        response = await client.send_message(USER_HELLO)

        usage = client.get_token_usage()
        assert usage.total_input_tokens == 100
        assert usage.total_output_tokens == 50
        assert usage.request_count == 1
        client.event_hook.on_response.assert_called_once_with(response)
        client.event_hook.on_request.assert_not_called()
        call_args = client.metrics_hook.record_latency.call_args
        assert call_args[0][0] == "llm_completion_duration"

    @pytest.mark.asyncio
    async def test_request_event_redacts_api_key(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response())
        client = _client(transport, no_sleep, enable_logging=True)

        await client.send_message(USER_HELLO)

        request_info = client.event_hook.on_request.call_args[0][0]
        assert request_info.url == "https://api.anthropic.com/v1/messages"
        assert request_info.method == "POST"
        assert request_info.headers["x-api-key"] == "***"

    @pytest.mark.asyncio
    async def test_send_message_async_is_alias(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response(text="async"))
        client = _client(transport, no_sleep)

        response = await client.send_message_async(USER_HELLO)

        assert response.content == "async"
        assert transport.calls == 1


class TestErrors:
    @pytest.mark.asyncio
    async def test_retries_server_errors(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(
            httpx.Response(503, json={"error": {"message": "Overloaded"}}),
            _message_response(),
        )
        client = _client(transport, no_sleep)

        response = await client.send_message(USER_HELLO)

        assert response.content == "Hello! How can I help you?"
        assert transport.calls == 2
        assert client.get_token_usage().request_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(
            httpx.Response(400, json={"error": {"message": "Invalid model"}})
        )
        client = _client(transport, no_sleep)

        with pytest.raises(ClassifiedError) as exc_info:
            await client.send_message(USER_HELLO)

        assert exc_info.value.kind is ErrorKind.CLIENT
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid model"
        assert transport.calls == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_waits_retry_after(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(
            httpx.Response(
                429,
                headers={"retry-after": "2"},
                json={"error": {"message": "Rate limited"}},
            ),
            _message_response(),
        )
        client = _client(transport, no_sleep)

        await client.send_message(USER_HELLO)

        no_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_network_error_after_exhausting_attempts(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(httpx.ConnectError("fetch failed"))
        client = _client(transport, no_sleep)

        with pytest.raises(ClassifiedError) as exc_info:
            await client.send_message(USER_HELLO)

        assert exc_info.value.kind is ErrorKind.NETWORK
        assert transport.calls == 3
        client.metrics_hook.increment.assert_any_call(
            "llm_errors_total", labels={"provider": "anthropic", "kind": "network"}
        )

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, no_sleep: AsyncMock) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return _message_response()

        config = LLMConfig(api_key="test-key", timeout=0.01, max_retries=1)
        client = AnthropicLLMClient(
            config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow)),
            retry_handler=RetryHandler(config.retry_policy(), sleep=no_sleep),
        )

        with pytest.raises(ClassifiedError, match="Request timeout") as exc_info:
            await client.send_message(USER_HELLO)

        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_invalid_json_body_is_server_error(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(httpx.Response(200, content=b"not json"))
        client = _client(transport, no_sleep, max_retries=2)

        with pytest.raises(ClassifiedError) as exc_info:
            await client.send_message(USER_HELLO)

        assert exc_info.value.kind is ErrorKind.SERVER
        assert transport.calls == 2

    def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with pytest.raises(ValueError, match="No API key"):
            AnthropicLLMClient(LLMConfig())

    def test_api_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")

        client = AnthropicLLMClient(LLMConfig())

        assert client._auth_headers()["x-api-key"] == "env-key"


class TestSessionBudget:
    @pytest.mark.asyncio
    async def test_rejects_before_transport_once_budget_spent(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response(input_tokens=10, output_tokens=10))
        client = _client(transport, no_sleep, max_session_tokens=20)

        await client.send_message(USER_HELLO)

        with pytest.raises(SessionBudgetExceededError, match="20"):
            await client.send_message(USER_HELLO)
        with pytest.raises(SessionBudgetExceededError):
            await client.stream_message(USER_HELLO)

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_reset_restores_budget(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response(input_tokens=10, output_tokens=10))
        client = _client(transport, no_sleep, max_session_tokens=20)
        await client.send_message(USER_HELLO)

        client.reset_token_usage()
        await client.send_message(USER_HELLO)

        assert transport.calls == 2
        info = client.get_token_usage_info()
        assert info.used == 20
        assert info.max == 20
        assert info.percentage == 100.0


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_message_yields_deltas(
        self,
        make_transport: Callable[..., Any],
        no_sleep: AsyncMock,
        sse: Callable[..., bytes],
    ) -> None:
        body = sse(
            '{"type":"message_start","message":{"id":"msg_1"}}',
            '{"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Hel"}}',
            '{"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"lo"}}',
            '{"type":"message_stop"}',
        )
        transport = make_transport(httpx.Response(200, content=body))
        client = _client(transport, no_sleep)
        on_start = MagicMock()

        stream = await client.stream_message(
            USER_HELLO, callbacks=StreamCallbacks(on_start=on_start)
        )
        deltas = [delta async for delta in stream]

        assert deltas == ["Hel", "lo"]
        on_start.assert_called_once_with("msg_1")
        assert transport.payload()["stream"] is True
        # Streams are not usage-tracked
        assert client.get_token_usage().request_count == 0

    @pytest.mark.asyncio
    async def test_stream_connection_is_retried(
        self,
        make_transport: Callable[..., Any],
        no_sleep: AsyncMock,
        sse: Callable[..., bytes],
    ) -> None:
        transport = make_transport(
            httpx.Response(503, json={"error": {"message": "Overloaded"}}),
            httpx.Response(
                200, content=sse('{"type":"content_block_delta","delta":{"text":"ok"}}')
            ),
        )
        client = _client(transport, no_sleep)

        stream = await client.stream_message(USER_HELLO)

        assert [delta async for delta in stream] == ["ok"]
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_stream_client_error_raised_on_connect(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(
            httpx.Response(401, json={"error": {"message": "Invalid API key"}})
        )
        client = _client(transport, no_sleep)

        with pytest.raises(ClassifiedError, match="Invalid API key"):
            await client.stream_message(USER_HELLO)

        assert transport.calls == 1


class TestTokenCounting:
    @pytest.mark.asyncio
    async def test_count_tokens(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(httpx.Response(200, json={"input_tokens": 42}))
        client = _client(transport, no_sleep)

        count = await client.count_tokens(
            [Message(role=Role.SYSTEM, content="sys"), *USER_HELLO]
        )

        assert count == 42
        assert str(transport.requests[0].url).endswith("/messages/count_tokens")
        assert transport.payload() == {
            "model": "claude-sonnet-4-20250514",
            "messages": [{"role": "user", "content": "Hello!"}],
            "system": "sys",
        }

    @pytest.mark.asyncio
    async def test_validate_context_window(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(
            httpx.Response(200, json={"input_tokens": 1000}),
            httpx.Response(200, json={"input_tokens": 190_000}),
        )
        client = _client(transport, no_sleep)

        assert await client.validate_context_window(USER_HELLO) is True
        assert await client.validate_context_window(USER_HELLO) is False


class TestRequestTimeout:
    @pytest.mark.asyncio
    async def test_requests_carry_configured_timeout(
        self, make_transport: Callable[..., Any], no_sleep: AsyncMock
    ) -> None:
        transport = make_transport(_message_response())
        client = _client(transport, no_sleep, timeout=45.0)

        await client.send_message(USER_HELLO)

        assert transport.requests[0].extensions["timeout"] == {
            "connect": 45.0,
            "read": 45.0,
            "write": 45.0,
            "pool": 45.0,
        }

    def test_owned_http_client_uses_configured_timeout(self) -> None:
        client = AnthropicLLMClient(LLMConfig(api_key="test-key", timeout=90.0))

        assert client._http.timeout == httpx.Timeout(90.0)


class ChunkedBody(httpx.AsyncByteStream):
    """Streaming body that can fail after its chunks and records closing."""

    def __init__(self, *chunks: bytes, fail_with: Exception | None = None) -> None:
        self.chunks = chunks
        self.fail_with = fail_with
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.fail_with is not None:
            raise self.fail_with

    async def aclose(self) -> None:
        self.closed = True


def _streaming_client(
    body: ChunkedBody, requests: list[httpx.Request], sleep: AsyncMock
) -> AnthropicLLMClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, stream=body)

    config = LLMConfig(api_key="test-key")
    return AnthropicLLMClient(
        config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_handler=RetryHandler(config.retry_policy(), sleep=sleep),
    )


class TestStreamLifecycle:
    @pytest.mark.asyncio
    async def test_failure_after_first_delta_is_not_retried(
        self, no_sleep: AsyncMock, sse: Callable[..., bytes]
    ) -> None:
        body = ChunkedBody(
            sse('{"type":"content_block_delta","delta":{"text":"Hel"}}'),
            fail_with=httpx.ReadError("connection reset"),
        )
        requests: list[httpx.Request] = []
        client = _streaming_client(body, requests, no_sleep)
        errors: list[ClassifiedError] = []

        stream = await client.stream_message(
            USER_HELLO, callbacks=StreamCallbacks(on_error=errors.append)
        )
        received: list[str] = []
        with pytest.raises(ClassifiedError) as exc_info:
            async for delta in stream:
                received.append(delta)

        assert received == ["Hel"]
        assert exc_info.value.kind is ErrorKind.NETWORK
        assert exc_info.value.message == "Stream interrupted"
        assert errors == [exc_info.value]
        assert len(requests) == 1
        no_sleep.assert_not_awaited()
        assert body.closed

    @pytest.mark.asyncio
    async def test_closing_unread_stream_releases_connection(
        self, no_sleep: AsyncMock, sse: Callable[..., bytes]
    ) -> None:
        body = ChunkedBody(sse('{"type":"content_block_delta","delta":{"text":"Hi"}}'))
        client = _streaming_client(body, [], no_sleep)

        stream = await client.stream_message(USER_HELLO)
        await stream.aclose()

        assert body.closed

    @pytest.mark.asyncio
    async def test_stream_as_context_manager(
        self, no_sleep: AsyncMock, sse: Callable[..., bytes]
    ) -> None:
        body = ChunkedBody(
            sse(
                '{"type":"content_block_delta","delta":{"text":"a"}}',
                '{"type":"content_block_delta","delta":{"text":"b"}}',
            )
        )
        client = _streaming_client(body, [], no_sleep)

        async with await client.stream_message(USER_HELLO) as stream:
            first = await anext(stream)

        assert first == "a"
        assert body.closed
