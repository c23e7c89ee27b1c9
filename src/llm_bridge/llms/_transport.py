# src/llm_bridge/llms/_transport.py

"""Shared request orchestration for HTTP-backed provider clients.

Providers supply the wire mapping (headers, payload, response
normalization, stream event parsing). Budget checks, retries, the request
deadline, usage tracking and hooks live here.
"""

import asyncio
import logging
import os
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from time import monotonic
from typing import Any, ClassVar

import httpx

from llm_bridge.errors import ClassifiedError, SessionBudgetExceededError
from llm_bridge.observability import names
from llm_bridge.observability.base import (
    EventHook,
    MetricsHook,
    NoOpEventHook,
    NoOpMetricsHook,
    RequestInfo,
    redact_headers,
)
from llm_bridge.transport.classifier import classify_error, classify_http_error
from llm_bridge.transport.retry import RetryHandler
from llm_bridge.transport.streaming import EventParser, StreamCallbacks, StreamingDecoder
from llm_bridge.usage.tracker import Pricing, TokenUsage, TokenUsageInfo, UsageTracker

from .base import LLMResponse, Message, RequestOptions, ResolvedRequest, resolve_request
from .config import LLMConfig

logger = logging.getLogger(__name__)


class HTTPLLMClient:
    """Base for provider clients talking JSON over HTTP."""

    provider: ClassVar[str]
    default_base_url: ClassVar[str]
    default_model: ClassVar[str]
    messages_path: ClassVar[str]
    api_key_env: ClassVar[str]
    pricing: ClassVar[Pricing]
    context_window: ClassVar[int]
    supported_models: ClassVar[tuple[str, ...]]
    stream_event_parser: ClassVar[EventParser]

    def __init__(
        self,
        config: LLMConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_handler: RetryHandler | None = None,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
        event_hook: EventHook = NoOpEventHook(),
    ) -> None:
        self._config = config
        self._api_key = self._resolve_api_key(config)
        self._model = config.model or self.default_model
        self._base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)
        self._retry_handler = retry_handler or RetryHandler(
            config.retry_policy(), on_retry=self._record_retry
        )
        self._usage = UsageTracker(self.pricing, config.max_session_tokens)
        self._decoder = StreamingDecoder(type(self).stream_event_parser)
        self.metrics_hook = metrics_hook
        self.event_hook = event_hook
        logger.info(
            "Initialized %s with model=%s, timeout=%s",
            type(self).__name__,
            self._model,
            config.timeout,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send_message(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> LLMResponse:
        self._check_session_budget()
        request = resolve_request(self._config, self.default_model, messages, options)
        payload = self._build_payload(request)

        logger.debug(
            "Calling %s: model=%s, messages=%d",
            self.provider,
            request.model,
            len(request.messages),
        )

        start = monotonic()
        try:
            data = await self._retry_handler.execute(
                lambda: self._post_json(self.messages_path, payload)
            )
        except ClassifiedError as exc:
            self._record_error(exc)
            raise

        elapsed_ms = 1000 * (monotonic() - start)
        response = self._normalize_response(data, elapsed_ms)
        self._usage.track_usage(response.usage)

        labels = {"provider": self.provider, "model": response.model or request.model}
        self.metrics_hook.record_latency(names.LLM_COMPLETION_DURATION, elapsed_ms, labels)
        self.metrics_hook.increment(names.LLM_REQUESTS_TOTAL, labels=labels)
        self.metrics_hook.increment(names.LLM_TOKENS_PROMPT, response.usage.input_tokens)
        self.metrics_hook.increment(
            names.LLM_TOKENS_COMPLETION, response.usage.output_tokens
        )
        self.metrics_hook.increment(names.LLM_TOKENS_TOTAL, response.usage.total_tokens)
        usage = self._usage.get_usage()
        self.metrics_hook.record_gauge(
            names.LLM_SESSION_TOKENS_USED, self._usage.total_session_tokens()
        )
        self.metrics_hook.record_gauge(names.LLM_ESTIMATED_COST, usage.estimated_cost)

        self.event_hook.on_response(response)

        logger.info(
            "%s completion: finish=%s, tokens=%d, latency=%.0fms",
            self.provider,
            response.finish_reason,
            response.usage.total_tokens,
            elapsed_ms,
        )
        return response

    async def send_message_async(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> LLMResponse:
        return await self.send_message(messages, options)

    async def stream_message(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
        callbacks: StreamCallbacks | None = None,
    ) -> "TextStream":
        """Connect (with retries) and return the delta stream.

        Failures after the connection is established are not retried. The
        connection is held until the stream is exhausted or closed, so
        callers that stop early should `aclose()` it (or use `async with`).
        """
        self._check_session_budget()
        request = resolve_request(
            self._config, self.default_model, messages, options, stream=True
        )
        payload = self._build_payload(request)

        start = monotonic()
        try:
            response = await self._retry_handler.execute(
                lambda: self._send(self.messages_path, payload, stream=True)
            )
        except ClassifiedError as exc:
            self._record_error(exc)
            raise

        labels = {"provider": self.provider, "model": request.model}
        self.metrics_hook.record_latency(
            names.LLM_STREAM_CONNECT_DURATION, 1000 * (monotonic() - start), labels
        )
        self.metrics_hook.increment(names.LLM_STREAMS_TOTAL, labels=labels)
        deltas = self._decoder.decode(_iter_body(response), callbacks)
        return TextStream(response, deltas)

    async def count_tokens(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> int:
        raise NotImplementedError

    async def validate_context_window(self, messages: Sequence[Message]) -> bool:
        """True when the prompt plus the response budget fits the context window."""
        input_tokens = await self.count_tokens(messages)
        return input_tokens + self._config.max_tokens <= self.context_window

    def get_token_usage(self) -> TokenUsage:
        return self._usage.get_usage()

    def get_token_usage_info(self) -> TokenUsageInfo:
        return self._usage.get_usage_info()

    def reset_token_usage(self) -> None:
        self._usage.reset()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "HTTPLLMClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _build_payload(self, request: ResolvedRequest) -> dict[str, Any]:
        raise NotImplementedError

    def _normalize_response(self, data: dict[str, Any], latency_ms: float) -> LLMResponse:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._send(path, payload)
        try:
            data = response.json()
        except ValueError as exc:
            raise ClassifiedError.server(
                "Invalid JSON in response body",
                response.status_code,
                {"original_error": str(exc)},
            ) from exc
        if not isinstance(data, dict):
            raise ClassifiedError.server(
                "Unexpected response body", response.status_code
            )
        return data

    async def _send(
        self, path: str, payload: dict[str, Any], *, stream: bool = False
    ) -> httpx.Response:
        """One transport attempt under the request deadline.

        Non-2xx responses and transport failures raise ClassifiedError.
        """
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json", **self._auth_headers()}

        if self._config.enable_logging:
            self.event_hook.on_request(
                RequestInfo(url=url, method="POST", headers=redact_headers(headers))
            )

        # httpx timeouts follow the request deadline, not the client defaults
        request = self._http.build_request(
            "POST", url, json=payload, headers=headers, timeout=self._config.timeout
        )
        try:
            response = await asyncio.wait_for(
                self._http.send(request, stream=stream), timeout=self._config.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ClassifiedError.network(
                "Request timeout", {"timeout": self._config.timeout}
            ) from exc
        except Exception as exc:
            raise classify_error(exc) from exc

        if not response.is_success:
            try:
                error = await classify_http_error(response)
            finally:
                await response.aclose()
            raise error

        return response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_api_key(self, config: LLMConfig) -> str:
        api_key = config.api_key or os.getenv(self.api_key_env)
        if not api_key:
            raise ValueError(
                f"No API key for '{self.provider}': pass api_key or set {self.api_key_env}"
            )
        return api_key

    def _check_session_budget(self) -> None:
        if self._usage.is_session_limit_reached():
            self.metrics_hook.increment(
                names.LLM_BUDGET_REJECTIONS_TOTAL, labels={"provider": self.provider}
            )
            raise SessionBudgetExceededError(
                max_tokens=self._usage.max_session_tokens,
                used_tokens=self._usage.total_session_tokens(),
            )

    def _record_error(self, error: ClassifiedError) -> None:
        logger.error(
            "%s request failed: kind=%s, status=%s, message=%s",
            self.provider,
            error.kind.value,
            error.status_code,
            error.message,
        )
        self.metrics_hook.increment(
            names.LLM_ERRORS_TOTAL,
            labels={"provider": self.provider, "kind": error.kind.value},
        )

    def _record_retry(self, error: BaseException, attempt: int) -> None:
        self.metrics_hook.increment(
            names.LLM_RETRIES_TOTAL, labels={"provider": self.provider}
        )


async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """Response bytes; closing the iterator closes the response."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


class TextStream:
    """Async iterator of text deltas bound to an open streaming response.

    Closing the stream releases the connection even if it was never
    iterated.
    """

    def __init__(self, response: httpx.Response, deltas: AsyncGenerator[str, None]) -> None:
        self._response = response
        self._deltas = deltas

    def __aiter__(self) -> "TextStream":
        return self

    async def __anext__(self) -> str:
        return await self._deltas.__anext__()

    async def aclose(self) -> None:
        try:
            await self._deltas.aclose()
        finally:
            await self._response.aclose()

    async def __aenter__(self) -> "TextStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
