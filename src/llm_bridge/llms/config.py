# src/llm_bridge/llms/config.py

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Literal

import yaml

from llm_bridge.transport.retry import RetryPolicy
from llm_bridge.usage.tracker import DEFAULT_MAX_SESSION_TOKENS

logger = logging.getLogger(__name__)

Provider = Literal["anthropic", "openai"]

SUPPORTED_PROVIDERS: tuple[Provider, ...] = ("anthropic", "openai")
PROVIDER_ALIASES: dict[str, Provider] = {"claude": "anthropic"}
DEFAULT_PROVIDER: Provider = "anthropic"


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for LLM clients.

    Immutable. Environment is only consulted by `from_env` and for the
    provider API key fallback.
    """

    provider: Provider | None = None
    api_key: str | None = None  # Falls back to provider's env var
    model: str | None = None  # Provider default when unset
    base_url: str | None = None
    organization_id: str | None = None
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    max_tokens: int = 16384
    temperature: float = 1.0
    max_session_tokens: int = DEFAULT_MAX_SESSION_TOKENS
    enable_logging: bool = False

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            initial_delay=self.retry_delay,
            max_delay=30.0,
            backoff_factor=2.0,
            respect_retry_after=True,
            max_retry_after_delay=60.0,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "LLMConfig":
        """Build a config from AI_PROVIDER, MAX_TOKENS and MAX_SESSION_TOKENS.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, Any] = {}

        provider = os.getenv("AI_PROVIDER")
        if provider:
            normalized = normalize_provider(provider)
            if normalized is None:
                logger.warning("Ignoring unsupported AI_PROVIDER=%s", provider)
            else:
                values["provider"] = normalized

        for env_name, field_name in (
            ("MAX_TOKENS", "max_tokens"),
            ("MAX_SESSION_TOKENS", "max_session_tokens"),
        ):
            raw = os.getenv(env_name)
            if raw:
                try:
                    values[field_name] = int(raw)
                except ValueError:
                    raise ValueError(f"{env_name} must be an integer, got {raw!r}")

        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "LLMConfig":
        return replace(self, **overrides)


def normalize_provider(name: str) -> Provider | None:
    """Canonical provider name, or None if unsupported."""
    key = name.strip().lower()
    key = PROVIDER_ALIASES.get(key, key)
    for provider in SUPPORTED_PROVIDERS:
        if provider == key:
            return provider
    return None


def load_config(path: str | Path, **overrides: Any) -> LLMConfig:
    """Load an LLMConfig from a YAML mapping. Overrides win over the file."""
    file_path = Path(path)
    logger.info("Loading LLM config from %s", file_path)
    with open(file_path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"LLM config in {file_path} must be a mapping")

    known = {f.name for f in fields(LLMConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown LLM config keys: {', '.join(unknown)}")

    if "provider" in data and data["provider"] is not None:
        provider = normalize_provider(str(data["provider"]))
        if provider is None:
            raise ValueError(f"Unknown LLM provider: {data['provider']}")
        data["provider"] = provider

    data.update(overrides)
    return LLMConfig(**data)
