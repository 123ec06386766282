"""Memory context retrieval for a chat turn."""

import asyncio
import time
from typing import Optional

from chat_stream.core.config import settings
from chat_stream.core.interfaces import IMemoryClient, ITelemetryEmitter
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import ChatTurnRequest, MemoryContext
from chat_stream.services.performance_monitor import PerformanceMonitor, get_performance_monitor

logger = get_logger(__name__)


class MemoryRetriever:
    """Fetches memory fragments for a turn, degrading to no context on failure."""

    def __init__(
        self,
        memory_client: Optional[IMemoryClient],
        telemetry: Optional[ITelemetryEmitter] = None,
        perf_monitor: Optional[PerformanceMonitor] = None,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.memory_client = memory_client
        self.telemetry = telemetry
        self.perf_monitor = perf_monitor or get_performance_monitor()
        self.top_k = top_k or settings.memory_top_k
        self.min_score = settings.memory_min_score if min_score is None else min_score
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.memory_timeout_seconds
        )

    async def retrieve(self, request: ChatTurnRequest, user_id: str) -> MemoryContext:
        """Search memory for the turn's message.

        Never raises except on cancellation; any failure yields an empty
        context with the elapsed latency.
        """
        if self.memory_client is None:
            logger.debug("Memory requested but no memory client is configured")
            return MemoryContext()

        start_time = time.perf_counter()
        try:
            fragments = await asyncio.wait_for(
                self.memory_client.search(
                    user_id,
                    request.message,
                    session_id=request.session_id,
                    limit=self.top_k,
                    min_score=self.min_score,
                ),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            error = "Memory search timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.warning(
                f"Memory retrieval failed, continuing without context: {error}",
                extra={"session_id": request.session_id, "memory_ms": latency_ms},
            )
            self.perf_monitor.increment_counter("memory_errors")
            self.perf_monitor.record_latency("memory_latency_ms", latency_ms)
            if self.telemetry is not None:
                await self.telemetry.log_zep_search(
                    user_id, request.session_id, latency_ms, success=False, error=error
                )
            return MemoryContext(latency_ms=latency_ms)

        latency_ms = (time.perf_counter() - start_time) * 1000
        context = MemoryContext(
            fragments=fragments,
            total_tokens=sum(fragment.tokens_estimate for fragment in fragments),
            latency_ms=latency_ms,
        )

        self.perf_monitor.record_latency("memory_latency_ms", latency_ms)
        if self.telemetry is not None:
            await self.telemetry.log_zep_search(
                user_id, request.session_id, latency_ms, success=True, items_count=len(fragments)
            )

        logger.info(
            "Memory retrieved",
            extra={
                "session_id": request.session_id,
                "memory_ms": round(latency_ms, 2),
                "items": len(fragments),
                "memory_tokens": context.total_tokens,
            },
        )
        return context
