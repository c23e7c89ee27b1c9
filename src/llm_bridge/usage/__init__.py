from .tracker import (
    ANTHROPIC_PRICING,
    DEFAULT_MAX_SESSION_TOKENS,
    OPENAI_PRICING,
    Pricing,
    TokenUsage,
    TokenUsageInfo,
    UsageTracker,
    estimate_tokens,
)

__all__ = [
    "ANTHROPIC_PRICING",
    "DEFAULT_MAX_SESSION_TOKENS",
    "OPENAI_PRICING",
    "Pricing",
    "TokenUsage",
    "TokenUsageInfo",
    "UsageTracker",
    "estimate_tokens",
]
