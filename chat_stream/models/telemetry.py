"""Telemetry event models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TelemetryEventType(str, Enum):
    """Kinds of telemetry events recorded per turn."""
    MESSAGE_SENT = "message_sent"
    OPENAI_CALL = "openai_call"
    ZEP_SEARCH = "zep_search"
    ZEP_UPSERT = "zep_upsert"
    ERROR = "error"


class TelemetryEvent(BaseModel):
    """A single telemetry record."""
    type: TelemetryEventType
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TelemetryStats(BaseModel):
    """Aggregates over stored telemetry."""
    total_messages: int = 0
    total_cost_usd: float = 0.0
    avg_ttft_ms: float = 0.0
    avg_response_time_ms: float = 0.0
    error_count: int = 0
