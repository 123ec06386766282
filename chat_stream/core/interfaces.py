"""Protocol definitions for service interfaces.

The turn orchestrator only depends on these Protocols, so every external
capability (memory store, upstream provider, telemetry sink, token
estimation) can be replaced in tests.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, runtime_checkable

from chat_stream.models.chat import FinishReason, MemoryFragment, PromptMessage
from chat_stream.models.telemetry import TelemetryStats


@dataclass
class CompletionCallbacks:
    """Fixed callback set a completion provider drives during one call.

    Each callback is an async callable. ``on_first_token`` fires at most once,
    on the first chunk that carries non-whitespace text.
    """
    on_first_token: Callable[[], Awaitable[None]]
    on_token: Callable[[str], Awaitable[None]]
    on_usage: Callable[[int, int], Awaitable[None]]
    on_done: Callable[[FinishReason], Awaitable[None]]
    on_error: Callable[[BaseException, Optional[int]], Awaitable[None]]


@dataclass
class CompletionMetrics:
    """Timings of one upstream completion call."""
    ttft_ms: Optional[float] = None
    upstream_ms: float = 0.0
    retry_count: int = 0


@runtime_checkable
class ICompletionProvider(Protocol):
    """Interface for an upstream streaming completion capability."""

    async def stream_completion(
        self,
        messages: List[PromptMessage],
        model: str,
        cancel_event: asyncio.Event,
        callbacks: CompletionCallbacks,
    ) -> CompletionMetrics:
        """Stream a completion, reporting progress through ``callbacks``.

        Exactly one of ``on_done`` or ``on_error`` is invoked unless
        ``cancel_event`` is set first, in which case the call returns quietly.
        """
        ...


@runtime_checkable
class IMemoryClient(Protocol):
    """Interface for the long-term memory store."""

    async def search(
        self,
        user_id: str,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[MemoryFragment]:
        """Return ranked memory fragments relevant to ``query``."""
        ...

    async def store_turn(
        self,
        user_id: str,
        session_id: str,
        user_message: str,
        assistant_message: str,
    ) -> bool:
        """Persist a completed exchange."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ITelemetryEmitter(Protocol):
    """Interface for turn telemetry. Implementations must never raise."""

    async def log_message_sent(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        message_length: int,
        use_memory: bool,
        model: str,
    ) -> None:
        ...

    async def log_openai_call(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        ...

    async def log_zep_search(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        duration_ms: float,
        success: bool,
        items_count: int = 0,
        error: Optional[str] = None,
    ) -> None:
        ...

    async def log_zep_upsert(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        ...

    async def log_error(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        error: str,
        code: str,
        **details: Any,
    ) -> None:
        ...

    async def get_stats(self) -> TelemetryStats:
        ...


@runtime_checkable
class ITokenEstimator(Protocol):
    """Strategy for estimating token counts when the provider reports none."""

    def estimate(self, text: str) -> int:
        ...
