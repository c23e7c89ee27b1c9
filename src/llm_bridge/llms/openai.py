# src/llm_bridge/llms/openai.py

import logging
from collections.abc import Sequence
from typing import Any, Literal

from llm_bridge.transport.streaming import parse_chat_completion_chunk
from llm_bridge.usage.tracker import OPENAI_PRICING, estimate_tokens

from ._transport import HTTPLLMClient
from .base import LLMResponse, Message, RequestOptions, ResolvedRequest, Role, Usage

logger = logging.getLogger(__name__)


class OpenAILLMClient(HTTPLLMClient):
    """OpenAI Chat Completions client.

    Transport-only retries. Token counting is a character estimate; the
    API has no counting endpoint.
    """

    provider = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o"
    messages_path = "/chat/completions"
    api_key_env = "OPENAI_API_KEY"
    pricing = OPENAI_PRICING
    context_window = 128_000
    supported_models = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4")
    stream_event_parser = staticmethod(parse_chat_completion_chunk)

    async def count_tokens(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> int:
        text = "".join(m.text() for m in messages)
        if options is not None and options.system:
            text = options.system + text
        count = estimate_tokens(text)
        logger.debug("Estimated %d prompt tokens for %d messages", count, len(messages))
        return count

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        if self._config.organization_id:
            headers["OpenAI-Organization"] = self._config.organization_id
        return headers

    def _build_payload(self, request: ResolvedRequest) -> dict[str, Any]:
        params = dict(request.params)
        messages = self._convert_messages(request.messages)

        system_override = params.pop("system", None)
        if system_override is not None:
            messages.insert(0, {"role": Role.SYSTEM.value, "content": system_override})

        stop_sequences = params.pop("stop_sequences", None)
        if stop_sequences is not None:
            params["stop"] = stop_sequences

        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
            **params,
        }
        if request.stream:
            payload["stream"] = True
        return payload

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict]:
        """Convert Message objects to OpenAI format."""
        result = []
        for m in messages:
            msg: dict = {"role": m.role.value, "content": m.content}
            if m.tool_call_id:
                msg["tool_call_id"] = m.tool_call_id
            result.append(msg)
        return result

    def _normalize_response(self, data: dict[str, Any], latency_ms: float) -> LLMResponse:
        """Normalize a Chat Completions payload to LLMResponse."""
        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}

        # Map finish reason
        finish_reason: Literal["stop", "tool_calls", "length", "error"]
        if message.get("tool_calls"):
            finish_reason = "tool_calls"
        elif choice.get("finish_reason") == "stop":
            finish_reason = "stop"
        elif choice.get("finish_reason") == "length":
            finish_reason = "length"
        else:
            finish_reason = "error"

        usage = data.get("usage") or {}
        details = usage.get("prompt_tokens_details") or {}
        return LLMResponse(
            id=str(data.get("id", "")),
            model=str(data.get("model", "")),
            content=message.get("content"),
            finish_reason=finish_reason,
            usage=Usage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
                cache_read_tokens=details.get("cached_tokens") or 0,
            ),
            latency_ms=latency_ms,
            raw=data,
        )
