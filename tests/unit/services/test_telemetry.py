"""Tests for SQLite-backed telemetry."""

import json

import aiosqlite
import pytest

from chat_stream.models.telemetry import TelemetryStats
from chat_stream.services.telemetry import TelemetryEmitter


@pytest.fixture
async def emitter(tmp_path):
    telemetry = TelemetryEmitter(db_path=str(tmp_path / "data" / "telemetry.db"), enabled=True)
    await telemetry.initialize()
    return telemetry


async def fetch_rows(db_path):
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT type, user_id, session_id, payload_json FROM telemetry_events ORDER BY rowid")
        return await cursor.fetchall()


class TestTelemetryEmitter:
    """Tests for TelemetryEmitter."""

    async def test_creates_database(self, emitter, tmp_path):
        assert (tmp_path / "data" / "telemetry.db").exists()

    async def test_persists_events(self, emitter):
        """Test each log helper writes one typed row."""
        await emitter.log_message_sent("user-1", "s1", 12, True, "gpt-4o-mini")
        await emitter.log_zep_search("user-1", "s1", 42.0, success=True, items_count=3)
        await emitter.log_zep_upsert("user-1", "s1", 12.5, success=False, error="rejected")

        rows = await fetch_rows(emitter.db_path)

        assert [row[0] for row in rows] == ["message_sent", "zep_search", "zep_upsert"]
        assert rows[0][1:3] == ("user-1", "s1")
        assert json.loads(rows[0][3]) == {"message_length": 12, "use_memory": True, "model": "gpt-4o-mini"}
        assert json.loads(rows[1][3])["items_count"] == 3
        assert json.loads(rows[2][3])["error"] == "rejected"

    async def test_stats(self, emitter):
        """Test aggregates over messages, calls and errors."""
        await emitter.log_message_sent("user-1", None, 2, False, "gpt-4o-mini")
        await emitter.log_message_sent("user-1", None, 5, False, "gpt-4o-mini")
        await emitter.log_openai_call("user-1", None, {"cost_usd": 0.000002, "ttft_ms": 100.0, "duration_ms": 400.0})
        await emitter.log_openai_call("user-1", None, {"cost_usd": 0.000004, "ttft_ms": 300.0, "duration_ms": 600.0})
        await emitter.log_error("user-1", None, "Too many requests", "RATE_LIMIT", status_code=429)

        stats = await emitter.get_stats()

        assert stats.total_messages == 2
        assert stats.total_cost_usd == pytest.approx(0.000006)
        assert stats.avg_ttft_ms == pytest.approx(200.0)
        assert stats.avg_response_time_ms == pytest.approx(500.0)
        assert stats.error_count == 1

    async def test_error_details_flattened(self, emitter):
        await emitter.log_error("user-1", None, "boom", "INTERNAL_ERROR", req_id="req-1")

        rows = await fetch_rows(emitter.db_path)

        assert json.loads(rows[0][3]) == {"error": "boom", "code": "INTERNAL_ERROR", "req_id": "req-1"}

    async def test_disabled(self, tmp_path):
        """Test a disabled emitter writes nothing and reports zeros."""
        db_path = tmp_path / "off.db"
        telemetry = TelemetryEmitter(db_path=str(db_path), enabled=False)

        await telemetry.log_message_sent("user-1", None, 2, False, "gpt-4o-mini")

        assert not db_path.exists()
        assert await telemetry.get_stats() == TelemetryStats()

    async def test_unusable_path_never_raises(self, tmp_path):
        """Test a storage failure disables telemetry instead of raising."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        telemetry = TelemetryEmitter(db_path=str(blocker / "telemetry.db"), enabled=True)

        await telemetry.log_error("user-1", None, "boom", "INTERNAL_ERROR")

        assert telemetry.enabled is False
        assert await telemetry.get_stats() == TelemetryStats()
