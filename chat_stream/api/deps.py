"""FastAPI dependencies resolving services from the container."""
from fastapi import Depends, Request

from chat_stream.core.container import ServiceContainer, get_container
from chat_stream.core.interfaces import ITelemetryEmitter
from chat_stream.services.chat.orchestrator import ChatTurnOrchestrator
from chat_stream.services.model_registry import ModelRegistry


def get_service_container(request: Request) -> ServiceContainer:
    """Get the service container."""
    # Try getting from app state first (lifespan managed)
    if hasattr(request.app.state, "container"):
        return request.app.state.container
    # Fallback to global (e.g. if testing without full app)
    return get_container()


def get_orchestrator(
    container: ServiceContainer = Depends(get_service_container)
) -> ChatTurnOrchestrator:
    return container.orchestrator


def get_model_registry(
    container: ServiceContainer = Depends(get_service_container)
) -> ModelRegistry:
    return container.model_registry


def get_telemetry(
    container: ServiceContainer = Depends(get_service_container)
) -> ITelemetryEmitter:
    return container.telemetry
