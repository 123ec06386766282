"""Relays an upstream completion stream into a streaming session."""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from chat_stream.core.errors import ProviderError, UnknownProviderError, classify_provider_error
from chat_stream.core.interfaces import CompletionCallbacks, CompletionMetrics, ICompletionProvider
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import (
    DoneEvent,
    FinishReason,
    PromptMessage,
    TokenEvent,
    UsageRecord,
)
from chat_stream.services.chat.stream_session import StreamingSession
from chat_stream.services.chat.usage_finalizer import UsageFinalizer

logger = get_logger(__name__)


@dataclass
class RelayResult:
    """Outcome of relaying one completion."""
    output_text: str = ""
    finish_reason: Optional[FinishReason] = None
    usage: Optional[UsageRecord] = None
    ttft_ms: Optional[float] = None
    has_provider_usage: bool = False
    error: Optional[ProviderError] = None
    metrics: CompletionMetrics = field(default_factory=CompletionMetrics)

    @property
    def completed(self) -> bool:
        return self.finish_reason is not None and self.finish_reason != FinishReason.ERROR


class CompletionRelay:
    """Drives a completion provider and forwards its output to the session.

    Guarantees at most one Usage and exactly one Done per turn; callbacks
    that arrive after Done are ignored.
    """

    def __init__(
        self,
        session: StreamingSession,
        provider: ICompletionProvider,
        finalizer: UsageFinalizer,
        turn_start: Optional[float] = None,
    ):
        self.session = session
        self.provider = provider
        self.finalizer = finalizer
        self.turn_start = turn_start if turn_start is not None else time.perf_counter()
        self.model = ""
        self.prompt_text = ""
        self._buffer: List[str] = []
        self._done = False
        self.result = RelayResult()

    @property
    def output_text(self) -> str:
        return "".join(self._buffer)

    async def on_first_token(self) -> None:
        if self.result.ttft_ms is None:
            self.result.ttft_ms = (time.perf_counter() - self.turn_start) * 1000

    async def on_token(self, text: str) -> None:
        if self._done:
            return
        self._buffer.append(text)
        if not self.session.is_closed:
            self.session.send(TokenEvent(text=text))

    async def on_usage(self, tokens_in: int, tokens_out: int) -> None:
        if self._done or self.finalizer.is_finalized:
            return
        usage = self.finalizer.finalize_from_provider(
            tokens_in, tokens_out, self.model, self.result.ttft_ms
        )
        self.result.usage = usage
        self.result.has_provider_usage = True
        self.session.send(usage.to_event())

    async def on_done(self, reason: FinishReason) -> None:
        if self._done:
            return

        if not self.finalizer.is_finalized and reason != FinishReason.ERROR:
            usage = self.finalizer.finalize_estimated(
                self.prompt_text, self.output_text, self.model, self.result.ttft_ms
            )
            self.result.usage = usage
            self.session.send(usage.to_event())

        self._finish(reason)

    async def on_error(self, error: BaseException, status_code: Optional[int] = None) -> None:
        if self._done:
            return

        classified = classify_provider_error(error, status_code)
        self.result.error = classified
        logger.warning(
            f"Upstream completion error: {classified.message}",
            extra={
                "req_id": self.session.request_id,
                "code": classified.code,
                "status_code": classified.status_code,
            },
        )
        self.session.send(TokenEvent(text=classified.user_message))
        self._finish(FinishReason.ERROR)

    def _finish(self, reason: FinishReason) -> None:
        self._done = True
        self.result.finish_reason = reason
        self.session.send(DoneEvent(finish_reason=reason))
        self.session.close()

    def callbacks(self) -> CompletionCallbacks:
        return CompletionCallbacks(
            on_first_token=self.on_first_token,
            on_token=self.on_token,
            on_usage=self.on_usage,
            on_done=self.on_done,
            on_error=self.on_error,
        )

    async def run(self, messages: List[PromptMessage], model: str) -> RelayResult:
        """Stream a completion through the session.

        Args:
            messages: Assembled prompt.
            model: Resolved upstream model.

        Returns:
            RelayResult with output, usage, finish reason and timings.
        """
        self.model = model
        self.prompt_text = "\n".join(message.content for message in messages)

        metrics = await self.provider.stream_completion(
            messages, model, self.session.cancel_event, self.callbacks()
        )
        self.result.metrics = metrics

        if not self._done and not self.session.is_closed:
            # Provider returned without reporting an outcome
            await self.on_error(UnknownProviderError("Upstream stream ended without completion"))

        self.result.output_text = self.output_text
        return self.result
