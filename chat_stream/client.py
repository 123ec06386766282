"""HTTP client for the chat stream API."""

import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chat_stream.core.logging import get_logger
from chat_stream.utils.sse import SSEMessage, iter_sse_events

logger = get_logger(__name__)


@dataclass
class ChatResult:
    """Assembled outcome of one streamed chat turn."""

    text: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    memory: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    latency_ms: float = 0.0
    ttft_ms: Optional[float] = None
    events: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.finish_reason not in (None, "error")


class ChatStreamClient:
    """Async client that consumes the SSE chat stream."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        api_prefix: str = "/api/v1",
        user_id: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ChatStreamClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers(),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.user_id:
            headers["X-User-Id"] = self.user_id
        return headers

    @staticmethod
    def build_body(
        message: str,
        use_memory: bool = False,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        return_memory: bool = False,
        testing_mode: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": message, "useMemory": use_memory}
        if session_id:
            body["sessionId"] = session_id
        if model:
            body["model"] = model
        if system_prompt:
            body["systemPrompt"] = system_prompt
        if return_memory:
            body["returnMemory"] = True
        if testing_mode:
            body["testingMode"] = True
        return body

    async def stream_events(self, body: Dict[str, Any]) -> AsyncIterator[SSEMessage]:
        """Yield parsed events of a chat stream until it terminates.

        Raises:
            httpx.HTTPStatusError: If the request is rejected before streaming.
        """
        await self.connect()
        async with self._client.stream("POST", f"{self.api_prefix}/chat/stream", json=body) as response:
            if response.status_code >= 400:
                await response.aread()
                response.raise_for_status()
            async for message in iter_sse_events(response.aiter_lines()):
                yield message

    async def chat(self, message: str, **options: Any) -> ChatResult:
        """Send a message and collect the streamed reply.

        Args:
            message: The user message.
            **options: Request options accepted by ``build_body``.

        Returns:
            ChatResult with the reply text, usage and finish reason.
        """
        body = self.build_body(message, **options)
        result = ChatResult()
        parts: List[str] = []
        start_time = time.time()

        try:
            async for event in self.stream_events(body):
                try:
                    payload = event.json() or {}
                except ValueError:
                    logger.warning(f"Skipping malformed {event.event or 'message'} event: {event.data!r}")
                    continue
                result.events.append(event.event or "message")

                if event.event == "token":
                    if result.ttft_ms is None:
                        result.ttft_ms = (time.time() - start_time) * 1000
                    parts.append(payload.get("text", ""))
                elif event.event == "memory":
                    result.memory = payload
                elif event.event == "usage":
                    result.usage = payload
                elif event.event == "error":
                    result.error = payload.get("error", "Unknown error")
                    result.error_code = payload.get("code")
                elif event.event == "done":
                    result.finish_reason = payload.get("finish_reason")

        except httpx.HTTPStatusError as e:
            try:
                data = e.response.json()
            except ValueError:
                data = {}
            result.error = data.get("message") or f"HTTP {e.response.status_code}"
            result.error_code = data.get("error")

        result.text = "".join(parts)
        result.latency_ms = (time.time() - start_time) * 1000
        if result.finish_reason == "error" and result.error is None:
            # Provider failures arrive as a user-facing token followed by done{error}
            result.error = result.text or "Stream ended with an error"
        return result
