# src/llm_bridge/transport/classifier.py

"""Map HTTP responses and raised exceptions onto ClassifiedError.

Classification is total: any input produces an error, nothing here raises.
"""

import asyncio
import logging
from typing import Any

import httpx

from llm_bridge.errors import ClassifiedError

logger = logging.getLogger(__name__)


async def classify_http_error(response: httpx.Response) -> ClassifiedError:
    """Classify a non-2xx response.

    429 becomes a rate limit error (with the Retry-After hint when it is an
    integer), other 4xx a client error, everything else a server error.
    An unreadable or non-JSON body falls back to a generic message.
    """
    status = response.status_code
    retry_after = _parse_retry_after(response.headers.get("retry-after"))

    body: Any = None
    try:
        await response.aread()
        body = response.json()
    except (ValueError, httpx.HTTPError, httpx.StreamError) as exc:
        logger.debug("Could not parse error body for HTTP %d: %s", status, exc)

    message = _extract_message(body) or f"HTTP error {status}"
    context = body if isinstance(body, dict) else None

    if status == 429:
        return ClassifiedError.rate_limit(message, retry_after, context)
    if 400 <= status < 500:
        return ClassifiedError.client(message, status, context)
    return ClassifiedError.server(message, status, context)


def classify_error(error: object) -> ClassifiedError:
    """Classify any raised value.

    ClassifiedError passes through. Timeouts and connectivity faults become
    network errors. Anything else is an unexpected server error.
    """
    if isinstance(error, ClassifiedError):
        return error

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ClassifiedError.network(
            "Request timeout", {"original_error": _describe(error)}
        )

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ClassifiedError.network(
            "Network error occurred during API request",
            {"original_error": _describe(error)},
        )

    return ClassifiedError.server(
        "Unexpected error", 500, {"original_error": _describe(error)}
    )


def is_connectivity_fault(error: BaseException) -> bool:
    """True for raw transport failures that never got an HTTP response."""
    return isinstance(error, (httpx.TransportError, ConnectionError))


def _extract_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return message if isinstance(message, str) and message else None
    if isinstance(error, str) and error:
        return error
    return None


def _parse_retry_after(value: str | None) -> int | None:
    # HTTP-date values are not supported; only delta-seconds
    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _describe(error: object) -> str:
    try:
        return str(error)
    except Exception:
        return object.__repr__(error)
