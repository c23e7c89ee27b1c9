# src/llm_bridge/transport/streaming.py

"""Server-Sent-Events decoder for streamed completions.

Reassembles `data: <json>` lines from a chunked byte stream and yields
text deltas in arrival order. Event parsing is pluggable so the same line
protocol serves both provider wire formats.
"""

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeAlias

from llm_bridge.errors import ClassifiedError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamStart:
    message_id: str


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class StreamComplete:
    payload: dict[str, Any]


StreamEvent: TypeAlias = StreamStart | ContentDelta | StreamComplete
EventParser: TypeAlias = Callable[[dict[str, Any]], list[StreamEvent]]


@dataclass(frozen=True)
class StreamCallbacks:
    """Optional observers invoked as the stream is decoded."""

    on_start: Callable[[str], None] | None = None
    on_content: Callable[[str], None] | None = None
    on_complete: Callable[[dict[str, Any]], None] | None = None
    on_error: Callable[[ClassifiedError], None] | None = None


def parse_message_event(payload: dict[str, Any]) -> list[StreamEvent]:
    """Claude-style events, discriminated by `type`."""
    match payload.get("type"):
        case "message_start":
            message = payload.get("message")
            message_id = message.get("id", "") if isinstance(message, dict) else ""
            return [StreamStart(message_id=str(message_id))]
        case "content_block_delta":
            delta = payload.get("delta")
            text = delta.get("text", "") if isinstance(delta, dict) else ""
            return [ContentDelta(text=text if isinstance(text, str) else "")]
        case "message_stop":
            return [StreamComplete(payload=payload)]
        case _:
            return []


def parse_chat_completion_chunk(payload: dict[str, Any]) -> list[StreamEvent]:
    """OpenAI-style `chat.completion.chunk` objects."""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0] if isinstance(choices[0], dict) else {}
    delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}

    events: list[StreamEvent] = []
    if delta.get("role"):
        events.append(StreamStart(message_id=str(payload.get("id", ""))))
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(ContentDelta(text=content))
    if choice.get("finish_reason") is not None:
        events.append(StreamComplete(payload=payload))
    return events


class StreamingDecoder:
    def __init__(self, parse_event: EventParser = parse_message_event) -> None:
        self._parse_event = parse_event

    async def decode(
        self,
        chunks: AsyncIterable[bytes] | None,
        callbacks: StreamCallbacks | None = None,
    ) -> AsyncGenerator[str, None]:
        """Yield text deltas from a byte stream.

        Ends at the `[DONE]` sentinel or end of input. A read failure is
        raised as a network error after `on_error` is notified. The source is
        closed on every exit path.
        """
        callbacks = callbacks or StreamCallbacks()

        if chunks is None:
            error = ClassifiedError.network("No response body")
            _notify_error(callbacks, error)
            raise error

        source = aiter(chunks)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        try:
            while True:
                try:
                    chunk = await anext(source)
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    error = ClassifiedError.network(
                        "Stream interrupted", {"original_error": str(exc)}
                    )
                    _notify_error(callbacks, error)
                    raise error from exc

                buffer += decoder.decode(chunk)
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    events = self._read_line(line)
                    if events is None:
                        logger.debug("Stream finished with done sentinel")
                        return
                    for text in _dispatch(events, callbacks):
                        yield text

            buffer += decoder.decode(b"", final=True)
            if buffer:
                events = self._read_line(buffer)
                if events:
                    for text in _dispatch(events, callbacks):
                        yield text
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    def _read_line(self, line: str) -> list[StreamEvent] | None:
        """Events carried by one line; None means the done sentinel."""
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return []
        data = line[len(DATA_PREFIX) :]
        if data == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream line: %.200s", data)
            return []
        if not isinstance(payload, dict):
            return []
        return self._parse_event(payload)


def _dispatch(
    events: list[StreamEvent], callbacks: StreamCallbacks
) -> Iterator[str]:
    for event in events:
        match event:
            case StreamStart(message_id=message_id):
                logger.debug("Stream started: %s", message_id)
                if callbacks.on_start:
                    callbacks.on_start(message_id)
            case ContentDelta(text=text):
                if callbacks.on_content:
                    callbacks.on_content(text)
                yield text
            case StreamComplete(payload=payload):
                if callbacks.on_complete:
                    callbacks.on_complete(payload)


def _notify_error(callbacks: StreamCallbacks, error: ClassifiedError) -> None:
    if callbacks.on_error:
        callbacks.on_error(error)
