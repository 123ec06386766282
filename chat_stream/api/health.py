"""Health check endpoint."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from chat_stream.api.deps import get_service_container
from chat_stream.core.container import ServiceContainer

router = APIRouter()


@router.get("/health")
async def health_check(
    container: ServiceContainer = Depends(get_service_container),
) -> Dict[str, Any]:
    """Report service status and which capabilities are configured."""
    settings = container.settings
    return {
        "status": "healthy" if container.is_initialized else "starting",
        "service": settings.app_name,
        "version": settings.app_version,
        "capabilities": {
            "provider_configured": bool(settings.openai_api_key),
            "memory": container.memory_client is not None,
            "telemetry": settings.enable_telemetry,
            "default_model": container.model_registry.default_model,
        },
    }
