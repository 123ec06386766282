"""Server-Sent Events framing and parsing helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional

DONE_SENTINEL = "[DONE]"

SSE_HEADERS: Dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse_event(event_type: str, payload: Any) -> str:
    """Frame a named event.

    Args:
        event_type: Value of the ``event:`` line.
        payload: JSON-serialisable data for the ``data:`` line.

    Returns:
        SSE formatted event.
    """
    return f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"


def format_sse_comment(text: str) -> str:
    """Frame a comment line. Comments never carry an ``event:`` line."""
    return f": {text}\n\n"


def format_done_sentinel() -> str:
    return f"data: {DONE_SENTINEL}\n\n"


@dataclass
class SSEMessage:
    """A parsed event from an SSE stream."""
    event: Optional[str]
    data: Optional[str]

    def json(self) -> Any:
        if self.data is None:
            return None
        return json.loads(self.data)

    @property
    def is_done_sentinel(self) -> bool:
        return self.event is None and self.data == DONE_SENTINEL


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[SSEMessage]:
    """Parse SSE lines into messages.

    Comment lines (heartbeats, the connect banner) are skipped. Both stream
    terminators are recognised: iteration stops after a ``done`` event, or on
    a bare ``data: [DONE]`` line, whichever arrives first.

    Args:
        lines: Lines of the response body without trailing newlines.

    Yields:
        Parsed messages, in stream order.
    """
    event: Optional[str] = None
    data_lines = []

    async for raw_line in lines:
        line = raw_line.rstrip("\r")

        if line == "":
            if event is None and not data_lines:
                continue
            message = SSEMessage(event=event, data="\n".join(data_lines) if data_lines else None)
            event = None
            data_lines = []

            if message.is_done_sentinel:
                return
            yield message
            if message.event == "done":
                return
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)

    if event is not None or data_lines:
        message = SSEMessage(event=event, data="\n".join(data_lines) if data_lines else None)
        if not message.is_done_sentinel:
            yield message
