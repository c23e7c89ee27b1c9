# src/llm_bridge/observability/names.py

"""Metric names emitted by the provider clients.

Latencies are reported in milliseconds; backends convert as needed.
"""

# Latency (ms)
LLM_COMPLETION_DURATION = "llm_completion_duration"
LLM_STREAM_CONNECT_DURATION = "llm_stream_connect_duration"

# Request outcomes, labelled by provider (and model or error kind)
LLM_REQUESTS_TOTAL = "llm_requests_total"
LLM_STREAMS_TOTAL = "llm_streams_total"
LLM_ERRORS_TOTAL = "llm_errors_total"
LLM_RETRIES_TOTAL = "llm_retries_total"
LLM_BUDGET_REJECTIONS_TOTAL = "llm_budget_rejections_total"

# Token counters, monotonic per process
LLM_TOKENS_PROMPT = "llm_tokens_prompt"
LLM_TOKENS_COMPLETION = "llm_tokens_completion"
LLM_TOKENS_TOTAL = "llm_tokens_total"

# Session gauges, reset with the client's usage
LLM_SESSION_TOKENS_USED = "llm_session_tokens_used"
LLM_ESTIMATED_COST = "llm_estimated_cost"
