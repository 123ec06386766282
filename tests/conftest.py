"""Shared test fixtures for chat stream service tests."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from httpx import ASGITransport, AsyncClient

from chat_stream.core.app_factory import create_app
from chat_stream.core.config import Settings
from chat_stream.core.container import ServiceContainer
from chat_stream.core.interfaces import CompletionCallbacks, CompletionMetrics
from chat_stream.models.chat import FinishReason, MemoryFragment, PromptMessage
from chat_stream.models.telemetry import TelemetryStats
from chat_stream.services.model_registry import DEFAULT_PRICING, ModelRegistry
from chat_stream.services.performance_monitor import get_performance_monitor


# ============================================================================
# Fakes
# ============================================================================

class ScriptedProvider:
    """Completion provider that plays back a fixed script of callbacks."""

    def __init__(
        self,
        tokens: Sequence[str] = ("Hello", "!"),
        usage: Optional[Tuple[Any, Any]] = None,
        finish: FinishReason = FinishReason.STOP,
        error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
        raise_exc: Optional[BaseException] = None,
        hang: bool = False,
        silent: bool = False,
        late_callbacks: bool = False,
    ):
        self.tokens = list(tokens)
        self.usage = usage
        self.finish = finish
        self.error = error
        self.status_code = status_code
        self.raise_exc = raise_exc
        self.hang = hang
        self.silent = silent
        self.late_callbacks = late_callbacks
        self.calls: List[Tuple[List[PromptMessage], str]] = []
        self.started = asyncio.Event()

    async def stream_completion(
        self,
        messages: List[PromptMessage],
        model: str,
        cancel_event: asyncio.Event,
        callbacks: CompletionCallbacks,
    ) -> CompletionMetrics:
        self.calls.append((list(messages), model))
        if self.raise_exc is not None:
            raise self.raise_exc

        for index, token in enumerate(self.tokens):
            if cancel_event.is_set():
                return CompletionMetrics()
            if index == 0:
                await callbacks.on_first_token()
            await callbacks.on_token(token)

        self.started.set()
        if self.hang:
            # Block until the turn task is cancelled
            await asyncio.Event().wait()

        if self.error is not None:
            await callbacks.on_error(self.error, self.status_code)
            return CompletionMetrics(upstream_ms=1.0)

        if self.silent:
            return CompletionMetrics(upstream_ms=1.0)

        if self.usage is not None:
            await callbacks.on_usage(*self.usage)
        await callbacks.on_done(self.finish)

        if self.late_callbacks:
            await callbacks.on_token("late")
            await callbacks.on_usage(99, 99)
            await callbacks.on_done(FinishReason.LENGTH)
            await callbacks.on_error(RuntimeError("late"), 500)

        return CompletionMetrics(ttft_ms=1.0, upstream_ms=2.0)


class InMemoryMemoryClient:
    """Memory client backed by a list of fragments."""

    def __init__(
        self,
        fragments: Optional[List[MemoryFragment]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        store_result: bool = True,
    ):
        self.fragments = list(fragments or [])
        self.error = error
        self.delay = delay
        self.store_result = store_result
        self.searches: List[Dict[str, Any]] = []
        self.stored: List[Tuple[str, str, str, str]] = []
        self.closed = False

    async def search(
        self,
        user_id: str,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[MemoryFragment]:
        self.searches.append({"user_id": user_id, "query": query, "session_id": session_id, "limit": limit})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.fragments[:limit] if limit else list(self.fragments)

    async def store_turn(self, user_id: str, session_id: str, user_message: str, assistant_message: str) -> bool:
        self.stored.append((user_id, session_id, user_message, assistant_message))
        return self.store_result

    async def close(self) -> None:
        self.closed = True


class RecordingTelemetry:
    """Telemetry emitter that keeps every call in memory."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple, Dict[str, Any]]] = []

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))

    def named(self, name: str) -> List[Tuple[tuple, Dict[str, Any]]]:
        return [(args, kwargs) for call_name, args, kwargs in self.calls if call_name == name]

    async def log_message_sent(self, *args, **kwargs) -> None:
        self._record("message_sent", *args, **kwargs)

    async def log_openai_call(self, *args, **kwargs) -> None:
        self._record("openai_call", *args, **kwargs)

    async def log_zep_search(self, *args, **kwargs) -> None:
        self._record("zep_search", *args, **kwargs)

    async def log_zep_upsert(self, *args, **kwargs) -> None:
        self._record("zep_upsert", *args, **kwargs)

    async def log_error(self, *args, **kwargs) -> None:
        self._record("error", *args, **kwargs)

    async def get_stats(self) -> TelemetryStats:
        return TelemetryStats(
            total_messages=len(self.named("message_sent")),
            error_count=len(self.named("error")),
        )


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_monitor():
    """Give every test a clean global performance monitor."""
    monitor = get_performance_monitor()
    monitor.reset_metrics()
    yield
    monitor.reset_metrics()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated from the environment's defaults."""
    return Settings(
        openai_api_key="sk-test",
        default_model="gpt-4o-mini",
        allowed_models=["gpt-4o-mini", "gpt-4o"],
        sse_heartbeat_seconds=30.0,
        sse_emit_done_sentinel=False,
        memory_enabled=True,
        memory_timeout_seconds=1.0,
        enable_telemetry=False,
        telemetry_db_path=str(tmp_path / "telemetry.db"),
    )


@pytest.fixture
def registry():
    """Model registry with the built-in pricing table."""
    return ModelRegistry(
        default_model="gpt-4o-mini",
        allowed_models=["gpt-4o-mini", "gpt-4o"],
        pricing=dict(DEFAULT_PRICING),
    )


@pytest.fixture
def provider():
    """Provider streaming "Hello!" with provider-reported usage."""
    return ScriptedProvider(tokens=["Hello", "!"], usage=(8, 2))


@pytest.fixture
def memory_client():
    return InMemoryMemoryClient()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def memory_fragments():
    return [
        MemoryFragment(id="m1", text="User prefers metric units.", score=0.92, tokens_estimate=7),
        MemoryFragment(id="m2", text="User lives in Ottawa.", score=0.81, tokens_estimate=6),
    ]


@pytest.fixture
async def container(test_settings, provider, registry, memory_client, telemetry):
    """Initialized container wired to the fakes."""
    service_container = ServiceContainer()
    service_container.set_provider(provider)
    service_container.set_model_registry(registry)
    service_container.set_memory_client(memory_client)
    service_container.set_telemetry(telemetry)
    await service_container.initialize(test_settings)
    yield service_container
    await service_container.shutdown()


@pytest.fixture
def app(container):
    """FastAPI app using the test container.

    ASGITransport does not run the lifespan, so the container is attached
    to app state directly.
    """
    application = create_app(container)
    application.state.container = container
    return application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def make_provider():
    """Factory for scripted providers."""
    return ScriptedProvider


@pytest.fixture
def make_memory_client():
    """Factory for in-memory memory clients."""
    return InMemoryMemoryClient
