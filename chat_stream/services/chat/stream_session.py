"""Server-Sent Events session for a single chat turn.

All writes go through an ``asyncio.Queue`` that ``stream()`` drains into the
HTTP response, so the response body iterator is the only transport writer.
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional

from chat_stream.core.config import settings
from chat_stream.core.errors import SessionStateError
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import StreamEvent, StreamEventType
from chat_stream.utils.sse import (
    SSE_HEADERS,
    format_done_sentinel,
    format_sse_comment,
    format_sse_event,
)

logger = get_logger(__name__)

CONNECTED_COMMENT = "Connected to chat stream"


class SessionState(str, Enum):
    """Lifecycle of a streaming session."""
    INITIALIZED = "initialized"
    HEADERS_SENT = "headers_sent"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamingSession:
    """Owns the SSE transport of one chat turn."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        heartbeat_seconds: Optional[float] = None,
        emit_done_sentinel: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize streaming session.

        Args:
            request_id: Correlation id echoed in ``X-Request-Id``.
            heartbeat_seconds: Heartbeat interval; defaults to settings.
            emit_done_sentinel: Append a legacy ``data: [DONE]`` line after the
                done event.
            clock: Wall clock in seconds, used for heartbeat timestamps.
        """
        self.request_id = request_id or str(uuid.uuid4())
        self.heartbeat_seconds = (
            heartbeat_seconds if heartbeat_seconds is not None else settings.sse_heartbeat_seconds
        )
        self.emit_done_sentinel = (
            emit_done_sentinel if emit_done_sentinel is not None else settings.sse_emit_done_sentinel
        )
        self.state = SessionState.INITIALIZED
        self.cancel_event = asyncio.Event()
        self.disconnected = False
        self.done_sent = False
        self._clock = clock
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._turn_task: Optional[asyncio.Task] = None

    @property
    def is_closed(self) -> bool:
        return self.state in (SessionState.CLOSING, SessionState.CLOSED)

    def open(self) -> Dict[str, str]:
        """Commit the exchange to streaming mode.

        Returns:
            Response headers for the event stream.

        Raises:
            SessionStateError: If the session was already opened.
        """
        if self.state != SessionState.INITIALIZED:
            raise SessionStateError("Streaming session already opened", state=self.state.value)

        headers = {**SSE_HEADERS, "X-Request-Id": self.request_id}
        self.state = SessionState.HEADERS_SENT
        self._queue.put_nowait(format_sse_comment(CONNECTED_COMMENT))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        return headers

    def send_event(self, event_type: str, payload: Dict) -> bool:
        """Queue a named event. Returns False once the session is closing."""
        if self.state == SessionState.INITIALIZED:
            raise SessionStateError("Cannot send events before the session is opened")
        if self.is_closed:
            return False

        self._queue.put_nowait(format_sse_event(event_type, payload))
        if self.state == SessionState.HEADERS_SENT:
            self.state = SessionState.STREAMING
        if event_type == StreamEventType.DONE.value:
            self.done_sent = True
        return True

    def send(self, event: StreamEvent) -> bool:
        return self.send_event(event.event_type.value, event.payload())

    def send_comment(self, text: str) -> bool:
        if self.state == SessionState.INITIALIZED or self.is_closed:
            return False
        self._queue.put_nowait(format_sse_comment(text))
        return True

    def bind_task(self, task: asyncio.Task) -> None:
        """Attach the turn task so a disconnect can cancel it."""
        self._turn_task = task

    async def _heartbeat_loop(self) -> None:
        while not self.cancel_event.is_set():
            try:
                await asyncio.wait_for(self.cancel_event.wait(), timeout=self.heartbeat_seconds)
            except asyncio.TimeoutError:
                if self.cancel_event.is_set() or self.is_closed:
                    return
                self.send_comment(f"heartbeat {int(self._clock() * 1000)}")

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def close(self) -> None:
        """End the stream. Idempotent."""
        if self.is_closed:
            return

        self.state = SessionState.CLOSING
        self._stop_heartbeat()
        if self.emit_done_sentinel and self.done_sent:
            self._queue.put_nowait(format_done_sentinel())
        self._queue.put_nowait(None)
        self.cancel_event.set()
        self.state = SessionState.CLOSED

    def abort(self) -> None:
        """Handle a client disconnect: stop writing and cancel the turn."""
        if self.state == SessionState.CLOSED:
            # The turn already finished streaming; let it finish its bookkeeping
            return

        self.disconnected = True
        self.state = SessionState.CLOSED
        self.cancel_event.set()
        self._stop_heartbeat()

        task = self._turn_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        logger.info("Client disconnected from chat stream", extra={"req_id": self.request_id})

    async def stream(self) -> AsyncIterator[str]:
        """Yield queued frames until the session closes.

        If the consumer stops early (client disconnect, failed write) the
        session is aborted.
        """
        completed = False
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    completed = True
                    return
                yield frame
        finally:
            if not completed:
                self.abort()
