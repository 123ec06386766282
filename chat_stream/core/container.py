"""Dependency injection container for service management.

Holds the process-wide services (provider, model registry, memory client,
telemetry, orchestrator) and their lifecycle. Per-turn state never lives
here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from chat_stream.core.logging import get_logger

if TYPE_CHECKING:
    from chat_stream.core.config import Settings
    from chat_stream.core.interfaces import ICompletionProvider, IMemoryClient, ITelemetryEmitter
    from chat_stream.services.chat.orchestrator import ChatTurnOrchestrator
    from chat_stream.services.model_registry import ModelRegistry

logger = get_logger(__name__)


class ServiceNotInitializedError(Exception):
    """Raised when accessing a service that hasn't been initialized."""

    def __init__(self, service_name: str):
        super().__init__(f"Service '{service_name}' has not been initialized. "
                         f"Call container.initialize() first.")
        self.service_name = service_name


@dataclass
class ServiceContainer:
    """Centralized container for dependency injection.

    Usage:
        container = ServiceContainer()
        await container.initialize(settings)

        orchestrator = container.orchestrator

        await container.shutdown()

    Tests may pre-populate services with the ``set_*`` methods before calling
    ``initialize``; pre-set services are kept.
    """

    _provider: Optional[ICompletionProvider] = field(default=None, repr=False)
    _model_registry: Optional[ModelRegistry] = field(default=None, repr=False)
    _memory_client: Optional[IMemoryClient] = field(default=None, repr=False)
    _telemetry: Optional[ITelemetryEmitter] = field(default=None, repr=False)
    _orchestrator: Optional[ChatTurnOrchestrator] = field(default=None, repr=False)
    _initialized: bool = field(default=False, repr=True)
    _settings: Optional[Settings] = field(default=None, repr=False)

    async def initialize(self, settings: Settings) -> None:
        """Initialize all services.

        Args:
            settings: Application settings.

        Raises:
            Exception: If any service fails to initialize.
        """
        if self._initialized:
            logger.warning("Container already initialized, skipping")
            return

        self._settings = settings
        logger.info("Initializing service container...")

        try:
            # Import here to avoid circular imports
            from chat_stream.services.chat.orchestrator import ChatTurnOrchestrator
            from chat_stream.services.memory_client import ZepMemoryClient
            from chat_stream.services.model_registry import ModelRegistry
            from chat_stream.services.providers.openai_provider import OpenAICompletionProvider
            from chat_stream.services.telemetry import TelemetryEmitter

            if self._model_registry is None:
                self._model_registry = ModelRegistry(
                    default_model=settings.default_model,
                    allowed_models=settings.allowed_models,
                    pricing_file=settings.pricing_file,
                    ttl_seconds=settings.pricing_cache_ttl_seconds,
                )
            logger.info(f"Model registry initialized (default model: {self._model_registry.default_model})")

            if self._provider is None:
                if not settings.openai_api_key:
                    logger.warning("OPENAI_API_KEY is not set; upstream calls will fail")
                self._provider = OpenAICompletionProvider(
                    api_key=settings.openai_api_key,
                    base_url=settings.openai_base_url,
                    temperature=settings.openai_temperature,
                    max_tokens=settings.openai_max_tokens,
                    timeout_seconds=settings.provider_timeout_seconds,
                    connect_timeout_seconds=settings.provider_connect_timeout_seconds,
                    retry_max=settings.provider_retry_max,
                    retry_base_delay_seconds=settings.provider_retry_base_delay_seconds,
                )
            logger.info("Completion provider initialized")

            if self._memory_client is None and settings.memory_enabled and settings.zep_api_key:
                self._memory_client = ZepMemoryClient(
                    api_key=settings.zep_api_key,
                    base_url=settings.zep_base_url,
                    timeout=settings.memory_timeout_seconds,
                    token_budget=settings.memory_token_budget,
                    clip_sentence_count=settings.memory_clip_sentences,
                )
                logger.info("Memory client initialized")
            elif self._memory_client is None:
                logger.info("Memory client not configured; memory lookups are disabled")

            if self._telemetry is None:
                telemetry = TelemetryEmitter(
                    db_path=settings.telemetry_db_path,
                    enabled=settings.enable_telemetry,
                )
                await telemetry.initialize()
                self._telemetry = telemetry
            logger.info("Telemetry initialized")

            if self._orchestrator is None:
                self._orchestrator = ChatTurnOrchestrator(
                    provider=self._provider,
                    registry=self._model_registry,
                    telemetry=self._telemetry,
                    memory_client=self._memory_client,
                    settings=settings,
                )

            self._initialized = True
            logger.info("Service container initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize service container: {e}")
            await self.shutdown()
            raise

    async def shutdown(self) -> None:
        """Shutdown all services and cleanup resources."""
        logger.info("Shutting down service container...")

        if self._memory_client:
            try:
                await self._memory_client.close()
                logger.info("Memory client closed")
            except Exception as e:
                logger.error(f"Error closing memory client: {e}")

        self._initialized = False
        logger.info("Service container shut down")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            raise ServiceNotInitializedError("settings")
        return self._settings

    @property
    def provider(self) -> ICompletionProvider:
        if self._provider is None:
            raise ServiceNotInitializedError("provider")
        return self._provider

    @property
    def model_registry(self) -> ModelRegistry:
        if self._model_registry is None:
            raise ServiceNotInitializedError("model_registry")
        return self._model_registry

    @property
    def memory_client(self) -> Optional[IMemoryClient]:
        """The memory client, or None when memory is not configured."""
        return self._memory_client

    @property
    def telemetry(self) -> ITelemetryEmitter:
        if self._telemetry is None:
            raise ServiceNotInitializedError("telemetry")
        return self._telemetry

    @property
    def orchestrator(self) -> ChatTurnOrchestrator:
        if self._orchestrator is None:
            raise ServiceNotInitializedError("orchestrator")
        return self._orchestrator

    def set_provider(self, provider: ICompletionProvider) -> None:
        """Set the completion provider (for testing)."""
        self._provider = provider

    def set_model_registry(self, registry: ModelRegistry) -> None:
        """Set the model registry (for testing)."""
        self._model_registry = registry

    def set_memory_client(self, client: IMemoryClient) -> None:
        """Set the memory client (for testing)."""
        self._memory_client = client

    def set_telemetry(self, telemetry: ITelemetryEmitter) -> None:
        """Set the telemetry emitter (for testing)."""
        self._telemetry = telemetry


# Module-level container instance
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get the global service container instance.

    Raises:
        RuntimeError: If the container hasn't been created yet.
    """
    if _container is None:
        raise RuntimeError(
            "Service container not created. Call set_container() first "
            "or use the FastAPI app.state.container."
        )
    return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    """Set the global service container instance."""
    global _container
    _container = container
