# src/llm_bridge/llms/factory.py

import logging
import os

import httpx

from llm_bridge.observability.base import (
    EventHook,
    MetricsHook,
    NoOpEventHook,
    NoOpMetricsHook,
)

from .base import LLMClient
from .config import DEFAULT_PROVIDER, LLMConfig, Provider, normalize_provider

logger = logging.getLogger(__name__)


def resolve_provider(
    config: LLMConfig, provider_override: str | None = None
) -> Provider:
    """Pick the provider: override, then config, then AI_PROVIDER, then default.

    Raises:
        ValueError: If an explicit override or configured provider is unknown.
    """
    for explicit in (provider_override, config.provider):
        if explicit is None:
            continue
        provider = normalize_provider(explicit)
        if provider is None:
            raise ValueError(f"Unknown LLM provider: {explicit}")
        return provider

    env_provider = os.getenv("AI_PROVIDER")
    if env_provider:
        provider = normalize_provider(env_provider)
        if provider is not None:
            return provider
        logger.warning("Ignoring unsupported AI_PROVIDER=%s", env_provider)

    return DEFAULT_PROVIDER


def create_llm_client(
    config: LLMConfig,
    metrics_hook: MetricsHook = NoOpMetricsHook(),
    event_hook: EventHook = NoOpEventHook(),
    *,
    provider_override: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> LLMClient:
    """Create an LLM client from config.

    Args:
        config: LLM configuration specifying provider, model, etc.
        metrics_hook: Optional metrics hook for observability.
        event_hook: Optional listener for request/response events.
        provider_override: Per-call provider choice; wins over config and env.
        http_client: Optional shared httpx client (not closed by the client).

    Returns:
        Configured LLMClient implementation.

    Raises:
        ValueError: If provider is unknown.

    Example:
        >>> config = LLMConfig(provider="anthropic", api_key="...")
        >>> client = create_llm_client(config)
        >>> response = await client.send_message([Message(Role.USER, "Hi")])
    """
    provider = resolve_provider(config, provider_override)
    logger.debug("Creating LLM client for provider=%s", provider)

    if provider == "openai":
        from .openai import OpenAILLMClient

        return OpenAILLMClient(
            config,
            http_client=http_client,
            metrics_hook=metrics_hook,
            event_hook=event_hook,
        )

    from .anthropic import AnthropicLLMClient

    return AnthropicLLMClient(
        config,
        http_client=http_client,
        metrics_hook=metrics_hook,
        event_hook=event_hook,
    )
