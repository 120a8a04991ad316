"""Structured audit events and the sinks that receive them."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import json
import logging
from pathlib import Path
import threading
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100
MEMORY_BUFFER_SIZE = 100


class AuditEventType(str, Enum):
    CONNECTION_ATTEMPT = "connection_attempt"
    CONNECTION_SUCCESS = "connection_success"
    CONNECTION_FAILED = "connection_failed"
    QUERY_EXECUTED = "query_executed"
    QUERY_FAILED = "query_failed"
    QUERY_REJECTED = "query_rejected"
    CHAT_MESSAGE = "chat_message"
    CHAT_RESPONSE = "chat_response"
    SCHEMA_LOADED = "schema_loaded"
    SCHEMA_MODIFIED = "schema_modified"
    SETTINGS_CHANGED = "settings_changed"
    ERROR = "error"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AuditEvent:
    event_type: AuditEventType
    message: str
    severity: AuditSeverity = AuditSeverity.INFO
    details: Optional[dict[str, Any]] = None
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.details is not None:
            data["details"] = self.details
        if self.session_id is not None:
            data["sessionId"] = self.session_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEvent":
        try:
            severity = AuditSeverity(data.get("severity", "info"))
        except ValueError:
            severity = AuditSeverity.INFO
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_type=AuditEventType(data["eventType"]),
            severity=severity,
            message=data["message"],
            details=data.get("details"),
            session_id=data.get("sessionId"),
        )

    def __str__(self) -> str:
        stamp = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp}] [{self.severity.value.upper()}] [{self.event_type.value}] {self.message}"


class AuditSink(Protocol):
    """Receives audit events one at a time. Implementations must not raise."""

    def append(self, event: AuditEvent) -> None: ...


class InMemoryAuditSink:
    """Keeps the most recent events in memory."""

    def __init__(self, max_events: int = MEMORY_BUFFER_SIZE):
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class JsonlAuditSink:
    """Appends one JSON object per line to a daily file under ``log_dir``."""

    def __init__(self, log_dir: str | Path):
        self.log_dir = Path(log_dir)
        self._lock = threading.Lock()

    def path_for(self, day: datetime) -> Path:
        return self.log_dir / f"audit_{day:%Y-%m-%d}.log"

    def append(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        try:
            with self._lock:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with open(self.path_for(event.timestamp), "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit event: {e}")

    def read_events(self, day: Optional[datetime] = None) -> list[AuditEvent]:
        """Read back one day's events, skipping malformed lines."""
        path = self.path_for(day or datetime.now())
        if not path.exists():
            return []
        events = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    events.append(AuditEvent.from_dict(json.loads(line)))
                except (ValueError, KeyError):
                    logger.debug(f"Skipping malformed audit line in {path}")
        return events


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_LENGTH else text[:PREVIEW_LENGTH] + "..."


class AuditLogger:
    """Convenience API that turns pipeline decisions into audit events."""

    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks) or [InMemoryAuditSink()]

    def log(self, event: AuditEvent) -> None:
        logger.debug(str(event))
        for sink in self.sinks:
            sink.append(event)

    def log_connection_attempt(self, host: str, database: str) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.CONNECTION_ATTEMPT,
            message=f"Connection attempt to {host}/{database}",
            details={"host": host, "database": database},
        ))

    def log_connection_success(self, host: str, database: str) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.CONNECTION_SUCCESS,
            message=f"Connected to {host}/{database}",
            details={"host": host, "database": database},
        ))

    def log_connection_failed(self, host: str, database: str, error: str) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.CONNECTION_FAILED,
            severity=AuditSeverity.WARNING,
            message=f"Connection to {host}/{database} failed",
            details={"host": host, "database": database, "error": error},
        ))

    def log_query_executed(
        self,
        sql: str,
        result_count: Optional[int] = None,
        execution_time: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """Record an executed query; ``execution_time`` is in seconds."""
        details: dict[str, Any] = {"sql": sql}
        if result_count is not None:
            details["resultCount"] = result_count
        if execution_time is not None:
            details["executionTimeMs"] = int(execution_time * 1000)
        self.log(AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            message="Query executed",
            details=details,
            session_id=session_id,
        ))

    def log_query_failed(self, sql: str, error: str, session_id: Optional[str] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.QUERY_FAILED,
            severity=AuditSeverity.WARNING,
            message="Query failed",
            details={"sql": sql, "error": error},
            session_id=session_id,
        ))

    def log_query_rejected(self, sql: str, errors: list[str], session_id: Optional[str] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.QUERY_REJECTED,
            severity=AuditSeverity.WARNING,
            message="Query rejected by validator",
            details={"sql": sql, "errors": list(errors)},
            session_id=session_id,
        ))

    def log_chat_message(self, message: str, session_id: Optional[str] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.CHAT_MESSAGE,
            message="User message",
            details={"preview": _preview(message)},
            session_id=session_id,
        ))

    def log_chat_response(
        self,
        response: str,
        sql: Optional[str] = None,
        masked_fields: Optional[list[str]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {"preview": _preview(response)}
        if sql is not None:
            details["sqlGenerated"] = True
        if masked_fields:
            details["maskedFields"] = list(masked_fields)
        self.log(AuditEvent(
            event_type=AuditEventType.CHAT_RESPONSE,
            message="Assistant response",
            details=details,
            session_id=session_id,
        ))

    def log_schema_loaded(self, database: str, table_count: int) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SCHEMA_LOADED,
            message=f"Schema loaded for {database}",
            details={"database": database, "tableCount": table_count},
        ))

    def log_schema_modified(self, database: str, changes: Optional[dict[str, Any]] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SCHEMA_MODIFIED,
            message=f"Schema metadata modified for {database}",
            details={"database": database, **(changes or {})},
        ))

    def log_settings_changed(self, changes: dict[str, Any]) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.SETTINGS_CHANGED,
            message="Settings changed",
            details=changes,
        ))

    def log_error(self, error: str, context: Optional[dict[str, Any]] = None, session_id: Optional[str] = None) -> None:
        self.log(AuditEvent(
            event_type=AuditEventType.ERROR,
            severity=AuditSeverity.ERROR,
            message=error,
            details=context,
            session_id=session_id,
        ))
