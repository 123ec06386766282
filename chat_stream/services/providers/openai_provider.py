"""OpenAI streaming completion provider built on LangChain's ChatOpenAI."""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import httpx
import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from chat_stream.core.config import settings
from chat_stream.core.errors import status_from_error, is_retryable_status
from chat_stream.core.interfaces import CompletionCallbacks, CompletionMetrics
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import FinishReason, PromptMessage
from chat_stream.utils.streaming_utils import (
    extract_chunk_text,
    extract_finish_reason,
    extract_usage_from_chunk,
)

logger = get_logger(__name__)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
}

_CONNECTION_ERRORS = (openai.APIConnectionError, httpx.TransportError, ConnectionError)


def to_langchain_messages(messages: List[PromptMessage]) -> List[BaseMessage]:
    """Convert role/content pairs into LangChain message objects."""
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason is None:
        return FinishReason.STOP
    return _FINISH_REASONS.get(reason, FinishReason.STOP)


def is_retryable_error(error: BaseException, status_code: Optional[int]) -> bool:
    """Rate limits, 5xx and connection failures are transient; other 4xx are not."""
    if status_code is not None:
        return is_retryable_status(status_code)
    return isinstance(error, _CONNECTION_ERRORS)


@dataclass
class _StreamState:
    first_token_fired: bool = False
    tokens_forwarded: bool = False
    first_token_at: Optional[float] = None


class OpenAICompletionProvider:
    """Streams chat completions from OpenAI.

    Retries transient failures with jittered backoff, but only while no token
    has been forwarded to the caller. SDK-level retries are disabled so the
    retry budget is owned here.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        connect_timeout_seconds: Optional[float] = None,
        retry_max: Optional[int] = None,
        retry_base_delay_seconds: Optional[float] = None,
        llm_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = base_url if base_url is not None else settings.openai_base_url
        self.temperature = temperature if temperature is not None else settings.openai_temperature
        self.max_tokens = max_tokens if max_tokens is not None else settings.openai_max_tokens
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.provider_timeout_seconds
        )
        self.connect_timeout_seconds = (
            connect_timeout_seconds
            if connect_timeout_seconds is not None
            else settings.provider_connect_timeout_seconds
        )
        self.retry_max = retry_max if retry_max is not None else settings.provider_retry_max
        self.retry_base_delay_seconds = (
            retry_base_delay_seconds
            if retry_base_delay_seconds is not None
            else settings.provider_retry_base_delay_seconds
        )
        self._llm_factory = llm_factory or self._build_llm

    def _build_llm(self, model: str) -> ChatOpenAI:
        kwargs = {
            "model": model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": httpx.Timeout(
                self.timeout_seconds, connect=self.connect_timeout_seconds
            ),
            "max_retries": 0,
            "streaming": True,
            "stream_usage": True,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["base_url"] = self.base_url
        return ChatOpenAI(**kwargs)

    def _backoff_delay(self, attempt: int) -> float:
        base = self.retry_base_delay_seconds
        return base * (2 ** (attempt - 1)) + random.uniform(0, base)

    async def _consume(
        self,
        llm: Any,
        messages: List[BaseMessage],
        cancel_event: asyncio.Event,
        callbacks: CompletionCallbacks,
        state: _StreamState,
    ) -> Optional[Tuple[Optional[str], Optional[Tuple[int, int]]]]:
        """Drain one upstream stream. Returns None if cancelled mid-stream."""
        finish_reason: Optional[str] = None
        usage: Optional[Tuple[int, int]] = None

        stream = llm.astream(messages)
        try:
            async for chunk in stream:
                if cancel_event.is_set():
                    return None

                text = extract_chunk_text(chunk)
                if text:
                    if not state.first_token_fired and text.strip():
                        state.first_token_fired = True
                        state.first_token_at = time.perf_counter()
                        await callbacks.on_first_token()
                    state.tokens_forwarded = True
                    await callbacks.on_token(text)

                chunk_usage = extract_usage_from_chunk(chunk)
                if chunk_usage is not None:
                    usage = chunk_usage

                chunk_reason = extract_finish_reason(chunk)
                if chunk_reason:
                    finish_reason = chunk_reason
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        return finish_reason, usage

    async def stream_completion(
        self,
        messages: List[PromptMessage],
        model: str,
        cancel_event: asyncio.Event,
        callbacks: CompletionCallbacks,
    ) -> CompletionMetrics:
        """Stream a completion for ``messages``.

        Args:
            messages: Ordered role/content pairs.
            model: Upstream model name.
            cancel_event: Set when the client went away; streaming stops.
            callbacks: Progress callbacks.

        Returns:
            CompletionMetrics for the call.
        """
        llm = self._llm_factory(model)
        lc_messages = to_langchain_messages(messages)
        state = _StreamState()
        metrics = CompletionMetrics()
        start = time.perf_counter()

        def finish() -> CompletionMetrics:
            metrics.upstream_ms = (time.perf_counter() - start) * 1000
            if state.first_token_at is not None:
                metrics.ttft_ms = (state.first_token_at - start) * 1000
            return metrics

        while True:
            try:
                outcome = await self._consume(llm, lc_messages, cancel_event, callbacks, state)
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                status_code = status_from_error(e)

                if cancel_event.is_set():
                    return finish()

                can_retry = (
                    not state.tokens_forwarded
                    and metrics.retry_count < self.retry_max
                    and is_retryable_error(e, status_code)
                )
                if not can_retry:
                    logger.error(
                        f"Upstream completion failed: {e}",
                        extra={"model": model, "status_code": status_code, "retry_count": metrics.retry_count},
                    )
                    await callbacks.on_error(e, status_code)
                    return finish()

                metrics.retry_count += 1
                delay = self._backoff_delay(metrics.retry_count)
                logger.warning(
                    f"Retrying upstream completion in {delay:.2f}s after error: {e}",
                    extra={"model": model, "status_code": status_code, "attempt": metrics.retry_count},
                )
                try:
                    await asyncio.wait_for(cancel_event.wait(), timeout=delay)
                    return finish()
                except asyncio.TimeoutError:
                    pass

        if outcome is None:
            return finish()

        finish_reason, usage = outcome
        if usage is not None:
            await callbacks.on_usage(*usage)
        await callbacks.on_done(map_finish_reason(finish_reason))
        return finish()
