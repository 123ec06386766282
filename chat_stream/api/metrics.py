"""Metrics API endpoints for chat turn performance."""

from fastapi import APIRouter, Depends, HTTPException

from chat_stream.api.deps import get_telemetry
from chat_stream.core.interfaces import ITelemetryEmitter
from chat_stream.core.logging import get_logger
from chat_stream.services.performance_monitor import get_performance_monitor

logger = get_logger(__name__)

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/summary")
async def metrics_summary() -> dict:
    """Return aggregated performance metrics for dashboards."""
    monitor = get_performance_monitor()
    try:
        return monitor.get_dashboard_metrics()
    except Exception as exc:
        logger.error("Failed to build metrics summary", exc_info=exc)
        raise HTTPException(status_code=500, detail="Failed to build metrics summary")


@router.get("/all")
async def metrics_all() -> dict:
    """Return all recorded metrics including detailed latencies."""
    monitor = get_performance_monitor()
    try:
        return monitor.get_metrics_summary()
    except Exception as exc:
        logger.error("Failed to build full metrics", exc_info=exc)
        raise HTTPException(status_code=500, detail="Failed to build full metrics")


@router.get("/telemetry")
async def telemetry_stats(telemetry: ITelemetryEmitter = Depends(get_telemetry)) -> dict:
    """Return aggregates over persisted telemetry events."""
    stats = await telemetry.get_stats()
    return stats.model_dump()
