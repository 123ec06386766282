"""Chat turn orchestration.

Runs one turn end to end: optional memory retrieval, prompt assembly, the
upstream completion relay, usage finalization, telemetry and conversation
storage. Everything the client sees goes through the turn's
StreamingSession.
"""

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from chat_stream.core.config import Settings, settings as default_settings
from chat_stream.core.interfaces import (
    ICompletionProvider,
    IMemoryClient,
    ITelemetryEmitter,
    ITokenEstimator,
)
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import (
    ChatTurnRequest,
    DoneEvent,
    ErrorEvent,
    FinishReason,
    MemoryContext,
    MemoryEvent,
)
from chat_stream.services.chat.completion_relay import CompletionRelay, RelayResult
from chat_stream.services.chat.memory_retriever import MemoryRetriever
from chat_stream.services.chat.prompt_assembler import PromptAssembler, PromptPlan, TokenBudget
from chat_stream.services.chat.stream_session import StreamingSession
from chat_stream.services.chat.usage_finalizer import CharRatioEstimator, UsageFinalizer
from chat_stream.services.model_registry import ModelRegistry
from chat_stream.services.performance_monitor import PerformanceMonitor, get_performance_monitor

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"
INTERNAL_ERROR_CODE = "INTERNAL_ERROR"


class ChatTurnOrchestrator:
    """Owns the lifecycle of chat turns."""

    def __init__(
        self,
        provider: ICompletionProvider,
        registry: ModelRegistry,
        telemetry: ITelemetryEmitter,
        memory_client: Optional[IMemoryClient] = None,
        prompt_assembler: Optional[PromptAssembler] = None,
        perf_monitor: Optional[PerformanceMonitor] = None,
        estimator_factory: Callable[[], ITokenEstimator] = CharRatioEstimator,
        settings: Optional[Settings] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.telemetry = telemetry
        self.memory_client = memory_client
        self.settings = settings or default_settings
        self.perf_monitor = perf_monitor or get_performance_monitor()
        self.prompt_assembler = prompt_assembler or PromptAssembler(
            default_system_prompt=self.settings.default_system_prompt,
            budget=TokenBudget(
                memory=self.settings.memory_token_budget,
                system=self.settings.prompt_system_token_budget,
                user=self.settings.prompt_user_token_budget,
            ),
            top_k=self.settings.memory_top_k,
            clip_sentences=self.settings.memory_clip_sentences,
        )
        self.memory_retriever = MemoryRetriever(
            memory_client,
            telemetry=telemetry,
            perf_monitor=self.perf_monitor,
            top_k=self.settings.memory_top_k,
            min_score=self.settings.memory_min_score,
            timeout_seconds=self.settings.memory_timeout_seconds,
        )
        self.estimator_factory = estimator_factory

    def start_turn(
        self,
        request: ChatTurnRequest,
        user_id: str,
        request_id: Optional[str] = None,
    ) -> Tuple[StreamingSession, Dict[str, str]]:
        """Open a session and schedule the turn on the event loop.

        Returns:
            The session and the response headers to stream it with.
        """
        session = StreamingSession(
            request_id=request_id,
            heartbeat_seconds=self.settings.sse_heartbeat_seconds,
            emit_done_sentinel=self.settings.sse_emit_done_sentinel,
        )
        headers = session.open()
        task = asyncio.create_task(self.run_turn(request, session, user_id))
        session.bind_task(task)
        return session, headers

    async def _retrieve_memory(
        self,
        request: ChatTurnRequest,
        session: StreamingSession,
        user_id: str,
    ) -> MemoryContext:
        context = MemoryContext()
        if request.use_memory and self.settings.memory_enabled:
            context = await self.memory_retriever.retrieve(request, user_id)

        if not context.is_empty:
            session.send(MemoryEvent(results=context.context_text, memory_ms=round(context.latency_ms, 2)))
        elif request.return_memory:
            session.send(MemoryEvent(results=None, memory_ms=round(context.latency_ms, 2)))
        return context

    async def run_turn(
        self,
        request: ChatTurnRequest,
        session: StreamingSession,
        user_id: str,
    ) -> Optional[RelayResult]:
        """Run a turn against an opened session.

        Returns:
            The relay result, or None if the turn failed before relaying.
        """
        turn_start = time.perf_counter()
        log_context = {"req_id": session.request_id, "session_id": request.session_id}
        self.perf_monitor.increment_counter("chat_turns_total")

        try:
            validation = self.registry.validate_model(request.model)
            model = validation.model
            log_context["model"] = model

            await self.telemetry.log_message_sent(
                user_id, request.session_id, len(request.message), request.use_memory, model
            )

            memory_context = await self._retrieve_memory(request, session, user_id)
            plan = self.prompt_assembler.assemble(
                request.message,
                memory=memory_context.fragments,
                system_prompt=request.system_prompt,
            )

            finalizer = UsageFinalizer(self.registry, self.estimator_factory())
            relay = CompletionRelay(session, self.provider, finalizer, turn_start=turn_start)
            result = await relay.run(plan.messages, model)

            await self._record_outcome(request, session, user_id, model, plan, memory_context, result, finalizer, turn_start)

            if result.finish_reason == FinishReason.STOP:
                await self._store_conversation(request, user_id, result.output_text)

            return result

        except asyncio.CancelledError:
            self.perf_monitor.increment_counter("chat_turns_cancelled")
            logger.info("Chat turn cancelled", extra=log_context)
            raise
        except Exception as e:
            self.perf_monitor.increment_counter("chat_turns_failed")
            logger.error(f"Chat turn failed: {e}", exc_info=True, extra=log_context)
            if not session.is_closed:
                session.send(ErrorEvent(error=INTERNAL_ERROR_MESSAGE, code=INTERNAL_ERROR_CODE))
                session.send(DoneEvent(finish_reason=FinishReason.ERROR))
            await self.telemetry.log_error(
                user_id, request.session_id, str(e), INTERNAL_ERROR_CODE, req_id=session.request_id
            )
            return None
        finally:
            session.close()
            self.perf_monitor.record_latency(
                "total_turn_latency_ms", (time.perf_counter() - turn_start) * 1000
            )

    async def _record_outcome(
        self,
        request: ChatTurnRequest,
        session: StreamingSession,
        user_id: str,
        model: str,
        plan: PromptPlan,
        memory_context: MemoryContext,
        result: RelayResult,
        finalizer: UsageFinalizer,
        turn_start: float,
    ) -> None:
        duration_ms = (time.perf_counter() - turn_start) * 1000
        metrics = result.metrics

        if result.ttft_ms is not None:
            self.perf_monitor.record_latency("first_token_latency_ms", result.ttft_ms)
        self.perf_monitor.record_latency("upstream_latency_ms", metrics.upstream_ms)
        if metrics.retry_count:
            self.perf_monitor.increment_counter("provider_retries", metrics.retry_count)

        if result.error is not None:
            self.perf_monitor.increment_counter("chat_turns_failed")
            self.perf_monitor.increment_counter(f"provider_errors_{result.error.code.lower()}")
            await self.telemetry.log_error(
                user_id,
                request.session_id,
                result.error.message,
                result.error.code,
                model=model,
                status_code=result.error.status_code,
                provider_retry_count=metrics.retry_count,
            )
            return

        if result.finish_reason is None:
            # Client went away before the upstream finished
            self.perf_monitor.increment_counter("chat_turns_cancelled")
            logger.info("Chat turn ended by client disconnect", extra={"req_id": session.request_id})
            return

        self.perf_monitor.increment_counter("chat_turns_completed")
        usage = result.usage
        if usage is None:
            return

        self.perf_monitor.record_token_usage(model, usage.tokens_in + usage.tokens_out, usage.cost_usd)
        pricing = finalizer.pricing

        logger.info(
            "Chat turn completed",
            extra={
                "req_id": session.request_id,
                "session_id": request.session_id,
                "model": model,
                "ttft_ms": result.ttft_ms,
                "tokens_in": usage.tokens_in,
                "tokens_out": usage.tokens_out,
                "cost_usd": usage.cost_usd,
                "finish_reason": result.finish_reason.value,
            },
        )

        await self.telemetry.log_openai_call(
            user_id,
            request.session_id,
            {
                "model": model,
                "ttft_ms": result.ttft_ms,
                "openai_ms": metrics.upstream_ms,
                "duration_ms": duration_ms,
                "tokens_in": usage.tokens_in,
                "tokens_out": usage.tokens_out,
                "cost_usd": usage.cost_usd,
                "has_provider_usage": result.has_provider_usage,
                "usage_source": usage.source.value,
                "input_price_per_mtok": pricing.input_per_mtok if pricing else None,
                "output_price_per_mtok": pricing.output_per_mtok if pricing else None,
                "provider_retry_count": metrics.retry_count,
                "finish_reason": result.finish_reason.value,
                "memory_ms": memory_context.latency_ms,
                "memory_items": len(memory_context.fragments),
                "prompt_plan": plan.summary(),
            },
        )

    async def _store_conversation(self, request: ChatTurnRequest, user_id: str, output_text: str) -> None:
        if not request.session_id or not output_text:
            return
        if request.testing_mode:
            logger.debug("Skipping conversation storage in testing mode", extra={"session_id": request.session_id})
            return
        if self.memory_client is None or not self.settings.memory_enabled:
            return

        start_time = time.perf_counter()
        try:
            stored = await self.memory_client.store_turn(
                user_id, request.session_id, request.message, output_text
            )
            error = None if stored else "Memory service rejected the conversation turn"
        except Exception as e:
            stored = False
            error = str(e)
            logger.warning(f"Failed to store conversation turn: {e}", extra={"session_id": request.session_id})

        await self.telemetry.log_zep_upsert(
            user_id,
            request.session_id,
            (time.perf_counter() - start_time) * 1000,
            success=stored,
            error=error,
        )
