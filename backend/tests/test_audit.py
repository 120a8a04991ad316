"""Unit tests for audit events and sinks."""

from __future__ import annotations

from datetime import datetime
import json
import os
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chatdb.security.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    AuditSeverity,
    InMemoryAuditSink,
    JsonlAuditSink,
)


class TestAuditEvent:
    """Tests for AuditEvent serialisation."""

    def test_round_trip(self):
        """to_dict/from_dict preserve every field."""
        event = AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            message="Query executed",
            severity=AuditSeverity.INFO,
            details={"sql": "SELECT 1"},
            session_id="s1",
            timestamp=datetime(2024, 5, 1, 12, 30),
        )
        data = event.to_dict()
        assert data["eventType"] == "query_executed"
        assert data["sessionId"] == "s1"
        assert AuditEvent.from_dict(data) == event

    def test_str(self):
        """The string form carries severity and type."""
        event = AuditEvent(AuditEventType.ERROR, "boom", AuditSeverity.ERROR, timestamp=datetime(2024, 1, 2, 3, 4, 5))
        assert str(event) == "[2024-01-02 03:04:05] [ERROR] [error] boom"


class TestSinks:
    """Tests for in-memory and JSONL sinks."""

    def test_memory_sink_is_bounded(self):
        """Only the most recent events are kept."""
        sink = InMemoryAuditSink(max_events=3)
        audit = AuditLogger(sink)
        for i in range(5):
            audit.log_error(f"e{i}")
        assert [e.message for e in sink.events()] == ["e2", "e3", "e4"]
        sink.clear()
        assert sink.events() == []

    def test_jsonl_sink_writes_daily_file(self, tmp_path):
        """Events are appended as JSON lines and can be read back."""
        sink = JsonlAuditSink(tmp_path)
        audit = AuditLogger(sink)
        audit.log_query_rejected("DROP TABLE x", ["Forbidden keyword found: DROP"], session_id="s1")
        audit.log_schema_loaded("shop", 2)

        path = sink.path_for(datetime.now())
        assert path.name == f"audit_{datetime.now():%Y-%m-%d}.log"
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["eventType"] == "query_rejected"

        events = sink.read_events()
        assert [e.event_type for e in events] == [AuditEventType.QUERY_REJECTED, AuditEventType.SCHEMA_LOADED]

    def test_jsonl_sink_skips_malformed_lines(self, tmp_path):
        """Corrupt lines do not stop reading."""
        sink = JsonlAuditSink(tmp_path)
        AuditLogger(sink).log_error("first")
        with open(sink.path_for(datetime.now()), "a", encoding="utf-8") as f:
            f.write("not json\n")
        AuditLogger(sink).log_error("second")
        assert [e.message for e in sink.read_events()] == ["first", "second"]

    def test_fan_out(self, tmp_path):
        """A logger delivers to every sink."""
        memory = InMemoryAuditSink()
        disk = JsonlAuditSink(tmp_path)
        AuditLogger(memory, disk).log_connection_attempt("db.local", "shop")
        assert len(memory.events()) == 1
        assert len(disk.read_events()) == 1


class TestAuditLogger:
    """Tests for the convenience methods."""

    def test_query_executed_details(self):
        """Execution time is recorded in milliseconds."""
        sink = InMemoryAuditSink()
        AuditLogger(sink).log_query_executed("SELECT 1", result_count=3, execution_time=0.25, session_id="s")
        details = sink.events()[0].details
        assert details == {"sql": "SELECT 1", "resultCount": 3, "executionTimeMs": 250}

    def test_chat_message_preview_is_truncated(self):
        """Long messages are previewed at 100 characters."""
        sink = InMemoryAuditSink()
        AuditLogger(sink).log_chat_message("x" * 150)
        assert sink.events()[0].details["preview"] == "x" * 100 + "..."

    def test_connection_failed_is_warning(self):
        """Failed connections are warnings."""
        sink = InMemoryAuditSink()
        AuditLogger(sink).log_connection_failed("h", "d", "refused")
        event = sink.events()[0]
        assert event.event_type == AuditEventType.CONNECTION_FAILED
        assert event.severity == AuditSeverity.WARNING

    def test_default_sink(self):
        """Without sinks an in-memory sink is used."""
        audit = AuditLogger()
        audit.log_settings_changed({"provider": "ollama"})
        assert len(audit.sinks[0].events()) == 1
