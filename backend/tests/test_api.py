"""HTTP API tests using FastAPI's TestClient with in-process fakes."""

from __future__ import annotations

from dataclasses import replace
import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

pytest.importorskip("pyodbc")

from fastapi.testclient import TestClient

from chatdb import main
from chatdb.core.config import ConnectionConfig
from chatdb.core.exceptions import ExecutionError
from chatdb.core.storage import LocalStorage
from chatdb.security.audit import AuditEventType, AuditLogger, InMemoryAuditSink

from conftest import FakeAdapter, FakeDatabase

SELECT_REPLY = "Here you go:\n```sql\nSELECT * FROM customers\n```"


def _failing_get_tables():
    raise ExecutionError("Database query failed: gone away")


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def app_state(tmp_path, monkeypatch, audit_sink):
    adapters = []

    def factory(provider):
        adapter = FakeAdapter(replies=[SELECT_REPLY] * 5, chunks=["Here you go:\n```sql\n", "SELECT * FROM customers", "\n```"])
        adapters.append(adapter)
        return adapter

    state = main.AppState(
        main.settings,
        database=FakeDatabase(),
        storage=LocalStorage(tmp_path),
        audit=AuditLogger(audit_sink),
        adapter_factory=factory,
    )
    state.adapters = adapters
    monkeypatch.setattr(main, "state", state)
    return state


@pytest.fixture
def client(app_state) -> TestClient:
    return TestClient(main.app)


@pytest.fixture
def ready_client(client) -> TestClient:
    """Connected to the fake database with the fake LLM configured."""
    assert client.post("/api/connect", json={"host": "db.local", "user": "app", "database": "shop"}).status_code == 200
    assert client.post("/api/llm/configure", json={"provider": "ollama", "model": "llama3"}).status_code == 200
    return client


class TestHealth:
    """Tests for status endpoints."""

    def test_health(self, client):
        """Health reports connection and LLM state."""
        data = client.get("/health").json()
        assert data == {"status": "ok", "database_connected": False, "llm_configured": False}

    def test_providers(self, client):
        """Every provider is listed."""
        ids = [p["id"] for p in client.get("/api/providers").json()["providers"]]
        assert "openai" in ids and "ollama" in ids


class TestConnectAndSchema:
    """Tests for connection and schema endpoints."""

    def test_connect_loads_schema(self, client, audit_sink):
        """Connecting reads the schema and audits the attempt."""
        response = client.post("/api/connect", json={"host": "db.local", "user": "app", "database": "shop"})
        assert response.status_code == 200
        data = response.json()
        assert data["connection_id"] == "db.local_3306_shop"
        assert data["schema"]["tables"] == 2
        assert data["schema"]["sensitive_columns"] == 1
        types = [e.event_type for e in audit_sink.events()]
        assert AuditEventType.CONNECTION_SUCCESS in types
        assert AuditEventType.SCHEMA_LOADED in types

    def test_connect_failure(self, client, app_state):
        """A refused connection is a 503 with a structured error."""
        app_state.database.connect = lambda config: False
        response = client.post("/api/connect", json={"host": "db.local", "user": "app", "database": "shop"})
        assert response.status_code == 503
        assert response.json()["detail"]["error_code"] == "connection_failed"

    def test_connect_schema_read_failure(self, client, app_state, audit_sink):
        """A schema read error after connecting is a 503 and is audited."""
        app_state.database.get_tables = _failing_get_tables
        response = client.post("/api/connect", json={"host": "db.local", "user": "app", "database": "shop"})
        assert response.status_code == 503
        assert response.json()["detail"]["error_code"] == "schema_read_failed"
        errors = [e for e in audit_sink.events() if e.event_type == AuditEventType.ERROR]
        assert errors[0].details["stage"] == "schema_read"

    def test_refresh_schema_read_failure(self, ready_client, app_state):
        """A failing refresh is a 503 and keeps the previous catalog."""
        app_state.database.get_tables = _failing_get_tables
        response = ready_client.post("/api/schema/refresh")
        assert response.status_code == 503
        assert response.json()["detail"]["error_code"] == "schema_read_failed"
        assert ready_client.get("/api/schema").status_code == 200

    def test_startup_survives_schema_read_failure(self, app_state, monkeypatch, audit_sink):
        """Startup logs the failure and leaves the LLM unconfigured."""
        connection = ConnectionConfig(host="db.local", user="app", database="shop")
        monkeypatch.setattr(main, "settings", replace(main.settings, connection=connection))
        app_state.database.get_tables = _failing_get_tables

        main._connect_on_startup()

        assert app_state.connection == connection
        assert app_state.catalog is None
        assert not app_state.engine.is_configured
        assert AuditEventType.ERROR in [e.event_type for e in audit_sink.events()]

    def test_connect_requires_database(self, client):
        """Missing connection fields are a 400."""
        response = client.post("/api/connect", json={"host": "db.local", "user": "app", "database": ""})
        assert response.status_code == 400

    def test_schema_before_connect(self, client):
        """No schema before connecting."""
        assert client.get("/api/schema").status_code == 404
        assert client.post("/api/schema/refresh").status_code == 409

    def test_schema_document(self, ready_client):
        """The full catalog is returned in camelCase."""
        data = ready_client.get("/api/schema").json()
        assert [t["name"] for t in data["tables"]] == ["customers", "orders"]

    def test_update_schema_persists_semantics(self, ready_client, app_state):
        """Edited flags are merged, saved and used for masking."""
        document = ready_client.get("/api/schema").json()
        document["tables"][0]["columns"][1]["isSensitive"] = True
        response = ready_client.put("/api/schema", json={"catalog": document})
        assert response.status_code == 200
        assert response.json()["sensitive_columns"] == 2

        saved = app_state.storage.load_schema_metadata("db.local_3306_shop")
        assert saved.table("customers").column("name").is_sensitive

        result = ready_client.post("/api/query/execute", json={"sql": "SELECT name FROM customers LIMIT 2"}).json()
        assert result["masked_fields"] == ["name"]


class TestLLMConfigure:
    """Tests for LLM configuration."""

    def test_unknown_provider(self, client):
        """Unknown providers are a 400."""
        response = client.post("/api/llm/configure", json={"provider": "mystery"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "invalid_provider"

    def test_api_key_is_not_echoed(self, client):
        """The configuration response never contains the key."""
        response = client.post("/api/llm/configure", json={"provider": "ollama", "api_key": "secret"})
        assert response.status_code == 200
        assert "secret" not in response.text


class TestChat:
    """Tests for chat endpoints."""

    def test_chat_requires_configuration(self, client):
        """Chatting before configuration is a 409."""
        response = client.post("/api/chat", json={"message": "hi"})
        assert response.status_code == 409

    def test_empty_message(self, ready_client):
        """Blank messages are a 400."""
        assert ready_client.post("/api/chat", json={"message": "   "}).status_code == 400

    def test_chat_masks_results_and_saves_session(self, ready_client, app_state):
        """A chat turn executes the SQL, masks emails and stores the session."""
        response = ready_client.post("/api/chat", json={"message": "List customers"})
        assert response.status_code == 200
        data = response.json()
        message = data["message"]
        assert message["sql"] == "SELECT * FROM customers"
        assert message["maskedFields"] == ["email"]
        assert message["queryResults"][0]["email"] == "ma***@example.com"

        session = ready_client.get(f"/api/sessions/{data['session_id']}").json()
        assert [m["role"] for m in session["messages"]] == ["user", "assistant"]
        assert session["messages"][0]["status"] == "sent"
        assert session["title"] == "List customers"

    def test_chat_continues_session(self, ready_client):
        """Passing the session id appends to the same conversation."""
        first = ready_client.post("/api/chat", json={"message": "List customers"}).json()
        ready_client.post("/api/chat", json={"message": "Again", "session_id": first["session_id"]})
        session = ready_client.get(f"/api/sessions/{first['session_id']}").json()
        assert len(session["messages"]) == 4

    def test_unknown_session(self, ready_client):
        """An unknown session id is a 404."""
        response = ready_client.post("/api/chat", json={"message": "hi", "session_id": "missing"})
        assert response.status_code == 404

    def test_stream(self, ready_client):
        """The stream relays text and the final reply is stored."""
        response = ready_client.post("/api/chat/stream", json={"message": "List customers"})
        assert response.status_code == 200
        assert response.text == SELECT_REPLY
        session_id = response.headers["x-session-id"]

        session = ready_client.get(f"/api/sessions/{session_id}").json()
        assert session["messages"][-1]["maskedFields"] == ["email"]


class TestQueries:
    """Tests for query endpoints."""

    def test_validate(self, ready_client):
        """Validation returns the verdict and sanitized SQL."""
        data = ready_client.post("/api/query/validate", json={"sql": "SELECT *  FROM customers ;"}).json()
        assert data["isValid"] is True
        assert "Query may expose sensitive data: customers.email" in data["warnings"]
        assert data["sanitized"] == "SELECT * FROM customers"

    def test_execute_rejected(self, ready_client, app_state):
        """Rejected SQL is a 400 and never reaches the database."""
        response = ready_client.post("/api/query/execute", json={"sql": "DROP TABLE customers"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "query_rejected"
        assert app_state.database.executed == []

    def test_execute(self, ready_client):
        """Valid SQL returns masked rows."""
        data = ready_client.post("/api/query/execute", json={"sql": "SELECT * FROM customers LIMIT 10"}).json()
        assert data["row_count"] == 2
        assert data["masked_fields"] == ["email"]


class TestSessions:
    """Tests for session endpoints."""

    def test_list_and_delete(self, ready_client):
        """Sessions can be listed and deleted."""
        session_id = ready_client.post("/api/chat", json={"message": "List customers"}).json()["session_id"]
        listed = ready_client.get("/api/sessions").json()
        assert listed["count"] == 1
        assert listed["sessions"][0]["id"] == session_id

        assert ready_client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert ready_client.delete(f"/api/sessions/{session_id}").status_code == 404
