from __future__ import annotations

from dataclasses import replace
import logging
import re
import threading
from typing import Any, Iterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .chat import ChatEngine, PromptBuilder
from .core import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    ConfigurationError,
    ConnectRequest,
    ConnectionConfig,
    ExecutionError,
    LLMConfigureRequest,
    LocalStorage,
    MessageStatus,
    ProviderError,
    QueryRejectedError,
    QueryValidationRequest,
    SchemaUpdateRequest,
    Settings,
    get_settings,
)
from .core.db import DatabaseCapability, MySQLDatabase
from .llm import LLMConfig, LLMProvider, available_providers, create_adapter
from .schema import SchemaCatalog, SchemaReader, load_merged_catalog, merge_catalogs
from .security import (
    AuditLogger,
    DataMasker,
    InMemoryAuditSink,
    JsonlAuditSink,
    QueryValidator,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()


class AppState:
    """Everything the HTTP layer shares between requests."""

    def __init__(
        self,
        settings: Settings,
        database: Optional[DatabaseCapability] = None,
        storage: Optional[LocalStorage] = None,
        audit: Optional[AuditLogger] = None,
        masker: Optional[DataMasker] = None,
        adapter_factory=create_adapter,
    ):
        self.settings = settings
        self.lock = threading.RLock()
        self.database = database or MySQLDatabase(max_rows=settings.max_rows)
        self.storage = storage or LocalStorage(settings.data_dir)
        self.audit = audit or AuditLogger(InMemoryAuditSink(), JsonlAuditSink(settings.audit_log_dir))
        if masker is None:
            masker = DataMasker.from_yaml(settings.masking_patterns_path) if settings.masking_patterns_path else DataMasker()
        self.validator = QueryValidator()
        self.engine = ChatEngine(
            database=self.database,
            prompt_builder=PromptBuilder(max_history_messages=settings.max_history_messages),
            validator=self.validator,
            masker=masker,
            audit=self.audit,
            adapter_factory=adapter_factory,
            max_context_messages=settings.max_context_messages,
        )
        self.connection: Optional[ConnectionConfig] = None
        self.catalog: Optional[SchemaCatalog] = None


state = AppState(settings)

app = FastAPI(title="ChatDB-AI", version="0.1.0")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
)


# --- Structured Error Response ---

class ErrorDetail(BaseModel):
    error_code: str
    message: str
    details: dict[str, Any] | None = None


def raise_error(status_code: int, error_code: str, message: str, details: dict | None = None):
    """Raise HTTPException with structured error detail."""
    raise HTTPException(
        status_code=status_code,
        detail=ErrorDetail(error_code=error_code, message=message, details=details).model_dump()
    )


# --- Input Sanitization ---

# Maximum message length to prevent abuse
MAX_MESSAGE_LENGTH = 2000

# Patterns that might indicate prompt injection attempts
SUSPICIOUS_PATTERNS = [
    r"ignore\s+(previous|all|above)\s+instructions?",
    r"disregard\s+(previous|all|above)",
    r"forget\s+(everything|all)",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"```\s*(sql|python|bash|sh)\s*\n.*?(drop|delete|truncate|alter|insert|update|exec)",
]


def sanitize_user_input(message: str) -> str:
    """
    Sanitize user input before it reaches the model.

    Suspicious phrasing is logged, not blocked; the SQL validator is what
    decides whether anything runs.
    """
    if not message:
        return ""

    # Truncate to prevent token overflow attacks
    sanitized = message[:MAX_MESSAGE_LENGTH]

    # Log if suspicious patterns detected (but still allow the message)
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, sanitized, re.IGNORECASE | re.DOTALL):
            logger.warning(f"Suspicious pattern detected in user input: {pattern}")
            break

    # Remove code fences that might confuse the LLM
    sanitized = re.sub(r"```", "", sanitized)

    return sanitized.strip()


# --- Helpers ---

def _current_catalog() -> SchemaCatalog:
    with state.lock:
        if state.catalog is not None:
            return state.catalog
        name = state.connection.database if state.connection else "unknown"
    return SchemaCatalog.empty(name)


def _load_catalog(include_sample_data: bool = True) -> SchemaCatalog:
    if state.connection is None:
        raise_error(409, "not_connected", "No database connection; call /api/connect first")
    reader = SchemaReader(state.database, state.connection.database, settings.sample_data_limit)
    try:
        catalog = load_merged_catalog(
            reader, state.storage, state.connection.connection_id, include_sample_data=include_sample_data
        )
    except ExecutionError as e:
        logger.error(f"Schema read failed: {e}")
        state.audit.log_error(str(e), context={"stage": "schema_read"})
        raise_error(503, "schema_read_failed", f"Failed to read schema: {e}")
    with state.lock:
        state.catalog = catalog
    if state.engine.is_configured:
        state.engine.update_schema(catalog)
    state.audit.log_schema_loaded(catalog.database_name, len(catalog.tables))
    logger.info(f"Schema loaded: {len(catalog.tables)} tables, {catalog.total_sensitive_columns} sensitive columns")
    return catalog


def _schema_summary(catalog: Optional[SchemaCatalog]) -> dict[str, Any]:
    if catalog is None:
        return {"database": "", "tables": 0, "columns": 0, "sensitive_columns": 0, "loaded_at": ""}
    return {
        "database": catalog.database_name,
        "tables": len(catalog.tables),
        "columns": catalog.total_columns,
        "sensitive_columns": catalog.total_sensitive_columns,
        "loaded_at": (catalog.updated_at or catalog.created_at).isoformat(),
    }


def _open_session(session_id: str | None) -> ChatSession:
    if session_id:
        session = state.storage.load_session(session_id)
        if session is None:
            raise_error(404, "session_not_found", f"Unknown session: {session_id}")
        return session
    provider = state.engine.llm_config.provider.value if state.engine.llm_config else None
    return ChatSession.create(database_name=_current_catalog().database_name, llm_provider=provider)


def _store_reply(session: ChatSession, reply: ChatMessage) -> ChatSession:
    """Mark the pending user message as sent, append the reply and persist."""
    last = session.last_message
    if last is not None and last.is_user and last.status == MessageStatus.SENDING:
        session = session.update_last_message(last.model_copy(update={"status": MessageStatus.SENT}))
    session = session.add_message(reply)
    state.storage.save_session(session)
    return session


# --- Startup Events ---

@app.on_event("startup")
def _connect_on_startup() -> None:
    config = settings.connection
    if not config.is_valid:
        logger.info("No MySQL connection configured; waiting for /api/connect")
        return
    logger.info(f"Connecting on startup to {config.masked_connection_string}")
    state.audit.log_connection_attempt(config.host, config.database)
    if not state.database.connect(config):
        state.audit.log_connection_failed(config.host, config.database, "connection refused")
        return
    state.audit.log_connection_success(config.host, config.database)
    with state.lock:
        state.connection = config
    try:
        catalog = _load_catalog()
    except HTTPException:
        logger.warning("Schema not loaded on startup; retry with /api/schema/refresh")
        return
    try:
        state.engine.configure(catalog, settings.llm_config())
    except (ConfigurationError, ValueError) as e:
        logger.warning(f"LLM not configured on startup: {e}")


# --- API Endpoints ---

@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "database_connected": state.connection is not None,
        "llm_configured": state.engine.is_configured,
    }


@app.get("/api/providers")
def list_providers() -> dict[str, Any]:
    return {"providers": available_providers()}


# --- Database and Schema Endpoints ---

@app.post("/api/connect")
def connect(request: ConnectRequest) -> dict[str, Any]:
    base = settings.connection
    overrides = {
        key: value
        for key, value in request.model_dump(exclude={"include_sample_data"}).items()
        if value is not None
    }
    config = replace(base, **overrides)
    if not config.is_valid:
        raise_error(400, "invalid_connection", "Host, user and database are required")

    state.audit.log_connection_attempt(config.host, config.database)
    if not state.database.connect(config):
        state.audit.log_connection_failed(config.host, config.database, "connection refused")
        raise_error(503, "connection_failed", f"Failed to connect to {config.masked_connection_string}")
    state.audit.log_connection_success(config.host, config.database)

    with state.lock:
        state.connection = config
    catalog = _load_catalog(include_sample_data=request.include_sample_data)
    return {"connected": True, "connection_id": config.connection_id, "schema": _schema_summary(catalog)}


@app.get("/api/schema")
def get_schema() -> dict[str, Any]:
    with state.lock:
        catalog = state.catalog
    if catalog is None:
        raise_error(404, "schema_not_loaded", "No schema loaded")
    return catalog.to_dict()


@app.get("/api/schema/summary")
def schema_summary() -> dict[str, Any]:
    with state.lock:
        return _schema_summary(state.catalog)


@app.post("/api/schema/refresh")
def schema_refresh() -> dict[str, Any]:
    logger.info("Refreshing schema...")
    catalog = _load_catalog()
    return _schema_summary(catalog)


@app.put("/api/schema")
def update_schema(request: SchemaUpdateRequest) -> dict[str, Any]:
    """Save user-edited semantics and apply them to the live structure."""
    if state.connection is None:
        raise_error(409, "not_connected", "No database connection; call /api/connect first")
    try:
        edited = SchemaCatalog.from_dict(request.catalog)
    except (KeyError, TypeError, ValueError) as e:
        raise_error(400, "invalid_schema", f"Invalid schema document: {e}")

    with state.lock:
        live = state.catalog
    catalog = merge_catalogs(live, edited) if live is not None else edited

    state.storage.save_schema_metadata(state.connection.connection_id, catalog)
    with state.lock:
        state.catalog = catalog
    if state.engine.is_configured:
        state.engine.update_schema(catalog)
    state.audit.log_schema_modified(
        catalog.database_name,
        {"sensitiveColumns": catalog.total_sensitive_columns},
    )
    return _schema_summary(catalog)


# --- LLM Endpoints ---

@app.post("/api/llm/configure")
def configure_llm(request: LLMConfigureRequest) -> dict[str, Any]:
    try:
        provider = LLMProvider(request.provider.lower())
    except ValueError:
        raise_error(400, "invalid_provider", f"Unknown LLM provider: {request.provider}")

    config = LLMConfig(
        provider=provider,
        model=request.model or provider.default_models[0],
        api_key=request.api_key or None,
        endpoint=request.endpoint or None,
        temperature=request.temperature if request.temperature is not None else settings.llm_temperature,
        max_tokens=request.max_tokens or settings.llm_max_tokens,
        timeout=settings.request_timeout,
    )

    try:
        state.engine.configure(_current_catalog(), config)
    except ConfigurationError as e:
        raise_error(400, "configuration_error", str(e))

    result: dict[str, Any] = {"configured": True, "config": config.model_dump(mode="json")}
    if request.validate_key and provider.requires_api_key:
        result["api_key_valid"] = state.engine.adapter.validate_api_key(config.api_key or "")
    return result


# --- Chat Endpoints ---

@app.post("/api/chat", response_model=ChatResponse)
def chat(request: ChatRequest) -> ChatResponse:
    # Sanitize and validate input
    message = sanitize_user_input(request.message)
    if not message:
        raise_error(400, "empty_message", "Message is required")

    logger.info(f"Chat request: {message[:100]}...")

    session = _open_session(request.session_id)
    session = session.add_message(ChatMessage.user(message))

    try:
        reply = state.engine.process_message(message, session)
    except ConfigurationError as e:
        raise_error(409, "not_configured", str(e))

    session = _store_reply(session, reply)
    logger.info(f"Chat response complete (session={session.id}, status={reply.status.value})")
    return ChatResponse(session_id=session.id, message=reply.to_json_dict())


@app.post("/api/chat/stream")
def chat_stream(request: ChatRequest) -> StreamingResponse:
    """Stream the reply text; the final message is stored when the stream ends."""
    message = sanitize_user_input(request.message)
    if not message:
        raise_error(400, "empty_message", "Message is required")

    session = _open_session(request.session_id)
    session = session.add_message(ChatMessage.user(message))

    try:
        chunks = state.engine.process_message_stream(message, session)
    except ConfigurationError as e:
        raise_error(409, "not_configured", str(e))

    def _relay() -> Iterator[str]:
        received: list[str] = []
        try:
            for chunk in chunks:
                received.append(chunk)
                yield chunk
        except ProviderError as e:
            logger.error(f"Streaming failed: {e}")
            state.audit.log_error(str(e), context={"stage": "streaming"}, session_id=session.id)
            reply = ChatMessage.error(str(e))
        else:
            reply = state.engine.finalize_streamed_reply("".join(received), session)
        _store_reply(session, reply)

    return StreamingResponse(
        _relay(),
        media_type="text/plain; charset=utf-8",
        headers={"X-Session-Id": session.id},
    )


# --- Query Endpoints ---

@app.post("/api/query/validate")
def validate_query(request: QueryValidationRequest) -> dict[str, Any]:
    result = state.validator.validate(request.sql, _current_catalog())
    return {**result.to_dict(), "sanitized": state.validator.sanitize(request.sql)}


@app.post("/api/query/execute")
def execute_query(request: QueryValidationRequest) -> dict[str, Any]:
    try:
        result = state.engine.execute_query(request.sql)
    except QueryRejectedError as e:
        raise_error(400, "query_rejected", "Query failed validation", {"errors": e.errors})
    except ConfigurationError as e:
        raise_error(409, "not_configured", str(e))
    except ExecutionError as e:
        logger.error(f"Database error: {e}")
        raise_error(500, "database_error", f"Database query failed: {e}")
    return {
        "rows": result.masked_rows,
        "row_count": len(result.masked_rows),
        "masked_fields": result.masked_field_names,
    }


# --- Session Endpoints ---

@app.get("/api/sessions")
def list_sessions() -> dict[str, Any]:
    sessions = state.storage.list_sessions()
    return {
        "sessions": [
            {
                "id": s.id,
                "title": s.title,
                "message_count": s.message_count,
                "last_activity": s.last_activity.isoformat(),
            }
            for s in sessions
        ],
        "count": len(sessions),
    }


@app.get("/api/sessions/{session_id}")
def get_session(session_id: str) -> dict[str, Any]:
    session = state.storage.load_session(session_id)
    if session is None:
        raise_error(404, "session_not_found", f"Unknown session: {session_id}")
    return session.to_json_dict()


@app.delete("/api/sessions/{session_id}")
def delete_session(session_id: str) -> dict[str, Any]:
    if not state.storage.delete_session(session_id):
        raise_error(404, "session_not_found", f"Unknown session: {session_id}")
    return {"deleted": True}
