"""JSON file storage for schema metadata and chat sessions."""

from __future__ import annotations

import json
import logging
from pathlib import Path
import re

from ..schema.catalog import SchemaCatalog
from .models import ChatSession

logger = logging.getLogger(__name__)


def _safe_name(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", key)


class LocalStorage:
    """Stores one JSON document per schema connection and per chat session."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.schema_dir = self.data_dir / "schemas"
        self.sessions_dir = self.data_dir / "sessions"

    def _ensure_dirs(self) -> None:
        self.schema_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _schema_path(self, connection_id: str) -> Path:
        return self.schema_dir / f"{_safe_name(connection_id)}.json"

    def _session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{_safe_name(session_id)}.json"

    # --- Schema metadata ---

    def save_schema_metadata(self, connection_id: str, catalog: SchemaCatalog) -> None:
        self._ensure_dirs()
        path = self._schema_path(connection_id)
        path.write_text(json.dumps(catalog.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info(f"Saved schema metadata for {connection_id}")

    def load_schema_metadata(self, connection_id: str) -> SchemaCatalog | None:
        """Load saved metadata, or None when absent or unreadable."""
        path = self._schema_path(connection_id)
        if not path.exists():
            return None
        try:
            return SchemaCatalog.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load schema metadata from {path}: {e}")
            return None

    def delete_schema_metadata(self, connection_id: str) -> bool:
        path = self._schema_path(connection_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    # --- Chat sessions ---

    def save_session(self, session: ChatSession) -> None:
        self._ensure_dirs()
        path = self._session_path(session.id)
        path.write_text(json.dumps(session.to_json_dict(), ensure_ascii=False, indent=2), encoding="utf-8")

    def load_session(self, session_id: str) -> ChatSession | None:
        path = self._session_path(session_id)
        if not path.exists():
            return None
        try:
            return ChatSession.from_json_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load session from {path}: {e}")
            return None

    def list_sessions(self) -> list[ChatSession]:
        """All readable sessions, most recently active first."""
        if not self.sessions_dir.exists():
            return []
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            session = self.load_session(path.stem)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True
