# src/llm_bridge/llms/anthropic.py

import logging
from collections.abc import Sequence
from typing import Any, Literal

from llm_bridge.transport.streaming import parse_message_event
from llm_bridge.usage.tracker import ANTHROPIC_PRICING

from ._transport import HTTPLLMClient
from .base import LLMResponse, Message, RequestOptions, ResolvedRequest, Role, Usage

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicLLMClient(HTTPLLMClient):
    """Claude Messages API client.

    Transport-only retries. Provider payloads never escape except via
    `LLMResponse.raw`.
    """

    provider = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    default_model = "claude-sonnet-4-20250514"
    messages_path = "/messages"
    count_tokens_path = "/messages/count_tokens"
    api_key_env = "ANTHROPIC_API_KEY"
    pricing = ANTHROPIC_PRICING
    context_window = 200_000
    supported_models = (
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
    )
    stream_event_parser = staticmethod(parse_message_event)

    async def count_tokens(
        self,
        messages: Sequence[Message],
        options: RequestOptions | None = None,
    ) -> int:
        """Exact prompt token count from the count_tokens endpoint."""
        system_content, non_system = self._extract_system(messages)
        if options is not None and options.system is not None:
            system_content = options.system

        payload: dict[str, Any] = {
            "model": (options.model if options and options.model else self._model),
            "messages": self._convert_messages(non_system),
        }
        if system_content:
            payload["system"] = system_content

        data = await self._retry_handler.execute(
            lambda: self._post_json(self.count_tokens_path, payload)
        )
        count = int(data.get("input_tokens", 0))
        logger.debug("Counted %d prompt tokens for %d messages", count, len(messages))
        return count

    def _auth_headers(self) -> dict[str, str]:
        headers = {
            "anthropic-version": ANTHROPIC_VERSION,
            "x-api-key": self._api_key,
        }
        if self._config.organization_id:
            headers["anthropic-organization-id"] = self._config.organization_id
        return headers

    def _build_payload(self, request: ResolvedRequest) -> dict[str, Any]:
        # Extract system message (Anthropic handles it separately)
        system_content, non_system = self._extract_system(request.messages)

        params = dict(request.params)
        system_override = params.pop("system", None)
        if system_override is not None:
            system_content = system_override

        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": self._convert_messages(non_system),
            **params,
        }
        if system_content:
            payload["system"] = system_content
        if request.stream:
            payload["stream"] = True
        return payload

    def _extract_system(
        self, messages: Sequence[Message]
    ) -> tuple[str | None, list[Message]]:
        """Extract system message from message list.

        Anthropic requires system message as a separate parameter.
        """
        system_content = None
        non_system = []

        for m in messages:
            if m.role == Role.SYSTEM:
                system_content = m.text()
            else:
                non_system.append(m)

        return system_content, non_system

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict]:
        """Convert Message objects to Anthropic format."""
        result = []
        for m in messages:
            if m.role == Role.TOOL:
                # Anthropic tool results have a different structure
                result.append(
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": m.tool_call_id,
                                "content": m.content,
                            }
                        ],
                    }
                )
            else:
                result.append({"role": m.role.value, "content": m.content})
        return result

    def _normalize_response(self, data: dict[str, Any], latency_ms: float) -> LLMResponse:
        """Normalize a Messages API payload to LLMResponse."""
        blocks = data.get("content") or []
        texts = [
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        has_tool_use = any(
            isinstance(block, dict) and block.get("type") == "tool_use"
            for block in blocks
        )

        # Map finish reason
        finish_reason: Literal["stop", "tool_calls", "length", "error"]
        stop_reason = data.get("stop_reason")
        if has_tool_use or stop_reason == "tool_use":
            finish_reason = "tool_calls"
        elif stop_reason in ("end_turn", "stop_sequence"):
            finish_reason = "stop"
        elif stop_reason == "max_tokens":
            finish_reason = "length"
        else:
            finish_reason = "error"

        usage = data.get("usage") or {}
        return LLMResponse(
            id=str(data.get("id", "")),
            model=str(data.get("model", "")),
            content="".join(texts) if texts else None,
            finish_reason=finish_reason,
            usage=Usage(
                input_tokens=usage.get("input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
                cache_creation_tokens=usage.get("cache_creation_input_tokens") or 0,
                cache_read_tokens=usage.get("cache_read_input_tokens") or 0,
            ),
            latency_ms=latency_ms,
            raw=data,
        )
