"""
Sunny - Simulated streaming of a buffered assistant reply.

The agentic loop produces its whole reply before anything is sent, so the
reply is replayed to the client as a sequence of server-sent events: every
tool status first, then the text in small chunks, then an end marker.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

DEFAULT_CHUNK_SIZE = 12
DEFAULT_CHUNK_DELAY = 0.015
DONE_MARKER = "[DONE]"


class StreamEventType(str, Enum):
    TOOL_STATUS = "toolStatus"
    TEXT = "text"
    DONE = "done"


@dataclass(frozen=True)
class StreamEvent:
    """One event of the simulated stream."""

    type: StreamEventType
    data: Optional[str] = None

    def to_payload(self) -> str:
        """The ``data:`` payload for this event."""
        if self.type == StreamEventType.DONE:
            return DONE_MARKER
        return json.dumps({self.type.value: self.data})


def format_sse(event: StreamEvent) -> str:
    """Render one event as an SSE frame."""
    return f"data: {event.to_payload()}\n\n"


def chunk_text(text: str, size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [text[i:i + size] for i in range(0, len(text), size)]


async def emit_events(
    final_text: str,
    status_events: Iterable[str] = (),
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    delay: float = DEFAULT_CHUNK_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[StreamEvent]:
    """Yield status events, then text chunks, then the end marker.

    Concatenating the data of the text events reproduces ``final_text``.
    """
    for status in status_events:
        yield StreamEvent(StreamEventType.TOOL_STATUS, status)

    for chunk in chunk_text(final_text or "", chunk_size):
        yield StreamEvent(StreamEventType.TEXT, chunk)
        if delay > 0:
            await sleep(delay)

    yield StreamEvent(StreamEventType.DONE)
