"""Telemetry persistence for chat turns.

Events are written to a SQLite table via aiosqlite. Telemetry must never
affect a turn: every failure is logged and swallowed here.
"""

import json
import os
import uuid
from typing import Any, Dict, Optional

import aiosqlite

from chat_stream.core.config import settings
from chat_stream.core.logging import get_logger
from chat_stream.models.telemetry import TelemetryEvent, TelemetryEventType, TelemetryStats

logger = get_logger(__name__)


class TelemetryEmitter:
    """Records turn lifecycle events."""

    def __init__(self, db_path: Optional[str] = None, enabled: Optional[bool] = None):
        """Initialize telemetry emitter.

        Args:
            db_path: SQLite file; defaults to ``settings.telemetry_db_path``.
            enabled: Overrides ``settings.enable_telemetry``.
        """
        self.db_path = db_path or settings.telemetry_db_path
        self.enabled = settings.enable_telemetry if enabled is None else enabled
        self._initialized = False

    async def initialize(self) -> None:
        """Create the events table."""
        if self._initialized or not self.enabled:
            return

        try:
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS telemetry_events (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        user_id TEXT,
                        session_id TEXT,
                        payload_json TEXT NOT NULL,
                        created_at DATETIME NOT NULL
                    )
                """)
                await db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_telemetry_type ON telemetry_events(type)"
                )
                await db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_telemetry_created ON telemetry_events(created_at)"
                )
                await db.commit()

            self._initialized = True
            logger.info(f"Telemetry initialized with database at {self.db_path}")

        except Exception as e:
            logger.error(f"Failed to initialize telemetry: {e}")
            self.enabled = False

    async def emit(self, event: TelemetryEvent) -> None:
        """Persist an event. Never raises."""
        logger.info(
            f"Telemetry: {event.type.value}",
            extra={"telemetry": True, "event_type": event.type.value, "session_id": event.session_id},
        )

        if not self.enabled:
            return

        await self.initialize()
        if not self._initialized:
            return

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO telemetry_events (id, type, user_id, session_id, payload_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(uuid.uuid4()),
                        event.type.value,
                        event.user_id,
                        event.session_id,
                        json.dumps(event.payload, default=str),
                        event.timestamp.isoformat(),
                    ),
                )
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to persist telemetry event {event.type.value}: {e}")

    async def log_message_sent(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        message_length: int,
        use_memory: bool,
        model: str,
    ) -> None:
        await self.emit(TelemetryEvent(
            type=TelemetryEventType.MESSAGE_SENT,
            user_id=user_id,
            session_id=session_id,
            payload={"message_length": message_length, "use_memory": use_memory, "model": model},
        ))

    async def log_openai_call(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        """Record the completed upstream call.

        ``payload`` carries timings (``ttft_ms``, ``openai_ms``,
        ``duration_ms``), usage (``tokens_in``, ``tokens_out``, ``cost_usd``,
        ``has_provider_usage``), prices, ``provider_retry_count`` and the
        ``prompt_plan`` summary.
        """
        await self.emit(TelemetryEvent(
            type=TelemetryEventType.OPENAI_CALL,
            user_id=user_id,
            session_id=session_id,
            payload=payload,
        ))

    async def log_zep_search(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        duration_ms: float,
        success: bool,
        items_count: int = 0,
        error: Optional[str] = None,
    ) -> None:
        await self.emit(TelemetryEvent(
            type=TelemetryEventType.ZEP_SEARCH,
            user_id=user_id,
            session_id=session_id,
            payload={
                "operation": "search",
                "zep_ms": duration_ms,
                "success": success,
                "items_count": items_count,
                "error": error,
            },
        ))

    async def log_zep_upsert(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        await self.emit(TelemetryEvent(
            type=TelemetryEventType.ZEP_UPSERT,
            user_id=user_id,
            session_id=session_id,
            payload={"operation": "upsert", "zep_ms": duration_ms, "success": success, "error": error},
        ))

    async def log_error(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        error: str,
        code: str,
        **details: Any,
    ) -> None:
        await self.emit(TelemetryEvent(
            type=TelemetryEventType.ERROR,
            user_id=user_id,
            session_id=session_id,
            payload={"error": error, "code": code, **details},
        ))

    async def get_stats(self) -> TelemetryStats:
        """Aggregate stored events. Returns zeros when telemetry is unavailable."""
        if not self.enabled:
            return TelemetryStats()

        await self.initialize()
        if not self._initialized:
            return TelemetryStats()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM telemetry_events WHERE type = ?",
                    (TelemetryEventType.MESSAGE_SENT.value,),
                )
                (total_messages,) = await cursor.fetchone()

                cursor = await db.execute(
                    """
                    SELECT
                        COALESCE(SUM(json_extract(payload_json, '$.cost_usd')), 0),
                        COALESCE(AVG(json_extract(payload_json, '$.ttft_ms')), 0),
                        COALESCE(AVG(json_extract(payload_json, '$.duration_ms')), 0)
                    FROM telemetry_events WHERE type = ?
                    """,
                    (TelemetryEventType.OPENAI_CALL.value,),
                )
                total_cost, avg_ttft, avg_duration = await cursor.fetchone()

                cursor = await db.execute(
                    "SELECT COUNT(*) FROM telemetry_events WHERE type = ?",
                    (TelemetryEventType.ERROR.value,),
                )
                (error_count,) = await cursor.fetchone()

            return TelemetryStats(
                total_messages=total_messages,
                total_cost_usd=round(float(total_cost), 6),
                avg_ttft_ms=float(avg_ttft),
                avg_response_time_ms=float(avg_duration),
                error_count=error_count,
            )
        except Exception as e:
            logger.warning(f"Failed to read telemetry stats: {e}")
            return TelemetryStats()
