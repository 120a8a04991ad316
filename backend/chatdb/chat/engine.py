"""Chat turn orchestration.

A turn moves through an explicit state sequence:

    IDLE -> BUILDING_PROMPT -> AWAITING_COMPLETION -> VALIDATING -> EXECUTING -> MASKING -> DONE

Any stage may divert to ERROR, which always ends in DONE. Validation strictly
precedes execution and execution strictly precedes masking. SQL that fails
validation is never sent to the database.
"""

from __future__ import annotations

from enum import Enum
import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from ..core.exceptions import ConfigurationError, ExecutionError, ProviderError, QueryRejectedError
from ..core.models import ChatMessage, ChatSession
from ..llm.base import LLMAdapter, LLMConfig, LLMProvider, LLMRequest
from ..llm.factory import create_adapter
from ..schema.catalog import SchemaCatalog
from ..security.audit import AuditLogger
from ..security.data_masking import DataMasker, MaskingResult
from ..security.query_validator import QueryValidator
from ..security.sql_guard import extract_sql
from .prompt_builder import PromptBuilder

if TYPE_CHECKING:
    from ..core.db import DatabaseCapability

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_MESSAGES = 10


class TurnState(str, Enum):
    IDLE = "idle"
    BUILDING_PROMPT = "building_prompt"
    AWAITING_COMPLETION = "awaiting_completion"
    VALIDATING = "validating"
    EXECUTING = "executing"
    MASKING = "masking"
    DONE = "done"
    ERROR = "error"


TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.IDLE: frozenset({TurnState.BUILDING_PROMPT}),
    TurnState.BUILDING_PROMPT: frozenset({TurnState.AWAITING_COMPLETION, TurnState.ERROR}),
    TurnState.AWAITING_COMPLETION: frozenset({TurnState.VALIDATING, TurnState.DONE, TurnState.ERROR}),
    TurnState.VALIDATING: frozenset({TurnState.EXECUTING, TurnState.DONE, TurnState.ERROR}),
    TurnState.EXECUTING: frozenset({TurnState.MASKING, TurnState.ERROR}),
    TurnState.MASKING: frozenset({TurnState.DONE, TurnState.ERROR}),
    TurnState.ERROR: frozenset({TurnState.DONE}),
    TurnState.DONE: frozenset(),
}


class _Turn:
    """Per-turn state. Discarded once the reply message exists."""

    def __init__(self, session_id: str, state: TurnState = TurnState.IDLE):
        self.session_id = session_id
        self.state = state
        self.failed_in: Optional[TurnState] = None

    def advance(self, state: TurnState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid turn transition {self.state.value} -> {state.value}")
        if state == TurnState.ERROR:
            self.failed_in = self.state
        logger.debug(f"Turn [{self.session_id}] {self.state.value} -> {state.value}")
        self.state = state


AdapterFactory = Callable[[LLMProvider], LLMAdapter]


class ChatEngine:
    """Turns a user message into an assistant message.

    Holds the schema, LLM configuration and adapter across turns. All
    collaborators are injected so the engine carries no process-wide state.
    """

    def __init__(
        self,
        database: "DatabaseCapability",
        prompt_builder: Optional[PromptBuilder] = None,
        validator: Optional[QueryValidator] = None,
        masker: Optional[DataMasker] = None,
        audit: Optional[AuditLogger] = None,
        adapter_factory: AdapterFactory = create_adapter,
        max_context_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES,
    ):
        self.database = database
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.validator = validator or QueryValidator()
        self.masker = masker or DataMasker()
        self.audit = audit or AuditLogger()
        self.adapter_factory = adapter_factory
        self.max_context_messages = max_context_messages

        self.schema: Optional[SchemaCatalog] = None
        self.llm_config: Optional[LLMConfig] = None
        self.adapter: Optional[LLMAdapter] = None
        self._lock = threading.RLock()

    @property
    def is_configured(self) -> bool:
        return self.schema is not None and self.adapter is not None

    def configure(self, schema: SchemaCatalog, llm_config: LLMConfig) -> None:
        """Select and initialize the adapter for ``llm_config.provider``.

        Raises:
            ConfigurationError: If the provider is unknown or lacks a required API key
        """
        adapter = self.adapter_factory(llm_config.provider)
        adapter.initialize(llm_config)
        with self._lock:
            previous = self.adapter
            self.schema = schema
            self.llm_config = llm_config
            self.adapter = adapter
        if previous is not None and previous is not adapter:
            previous.dispose()
        logger.info(
            f"Chat engine configured: provider={llm_config.provider.value}, "
            f"model={llm_config.model}, tables={len(schema.tables)}"
        )
        self.audit.log_settings_changed({"provider": llm_config.provider.value, "model": llm_config.model})

    def update_schema(self, schema: SchemaCatalog) -> None:
        """Swap in a new catalog; turns already running keep the one they started with."""
        with self._lock:
            self.schema = schema

    def _snapshot(self) -> tuple[SchemaCatalog, LLMConfig, LLMAdapter]:
        with self._lock:
            if self.schema is None or self.llm_config is None or self.adapter is None:
                raise ConfigurationError("Chat engine is not configured; call configure() first")
            return self.schema, self.llm_config, self.adapter

    def build_history(self, session: ChatSession) -> list[dict[str, str]]:
        """Prior turns as role/content pairs, without the live user message."""
        messages = list(session.messages)
        if messages and messages[-1].is_user:
            messages = messages[:-1]
        if self.max_context_messages <= 0:
            return []
        return [
            {"role": m.role.value, "content": m.content}
            for m in messages[-self.max_context_messages:]
        ]

    def _build_request(
        self, user_text: str, session: ChatSession, schema: SchemaCatalog, config: LLMConfig
    ) -> LLMRequest:
        history = self.build_history(session)
        return LLMRequest(
            system_prompt=self.prompt_builder.build_system_prompt(schema),
            user_prompt=self.prompt_builder.build_user_prompt(user_text, history),
            conversation_history=history,
            config=config,
        )

    # --- Turns ---

    def process_message(self, user_text: str, session: ChatSession) -> ChatMessage:
        """Run one full turn and return the assistant (or error) message.

        Raises:
            ConfigurationError: If :meth:`configure` has not been called
        """
        schema, config, adapter = self._snapshot()
        turn = _Turn(session.id)
        self.audit.log_chat_message(user_text, session_id=session.id)

        try:
            turn.advance(TurnState.BUILDING_PROMPT)
            request = self._build_request(user_text, session, schema, config)

            turn.advance(TurnState.AWAITING_COMPLETION)
            response = adapter.complete(request)
            return self._complete_turn(turn, response.content, schema)
        except (ProviderError, ExecutionError) as e:
            return self._fail(turn, e)
        except Exception as e:
            logger.exception(f"Unexpected error during chat turn for session {session.id}")
            return self._fail(turn, e)

    def process_message_stream(self, user_text: str, session: ChatSession) -> Iterator[str]:
        """Stream the model's text for one turn.

        Text only: no SQL is extracted, validated or executed here. Pass the
        accumulated text to :meth:`finalize_streamed_reply` to run that part.

        Raises:
            ConfigurationError: If :meth:`configure` has not been called
        """
        schema, config, adapter = self._snapshot()
        self.audit.log_chat_message(user_text, session_id=session.id)
        request = self._build_request(user_text, session, schema, config)
        return adapter.stream_complete(request)

    def finalize_streamed_reply(self, full_text: str, session: ChatSession) -> ChatMessage:
        """Run extraction, validation, execution and masking on streamed text."""
        schema, _, _ = self._snapshot()
        turn = _Turn(session.id, TurnState.AWAITING_COMPLETION)
        try:
            return self._complete_turn(turn, full_text, schema)
        except ExecutionError as e:
            return self._fail(turn, e)
        except Exception as e:
            logger.exception(f"Unexpected error finalizing streamed reply for session {session.id}")
            return self._fail(turn, e)

    def _complete_turn(self, turn: _Turn, content: str, schema: SchemaCatalog) -> ChatMessage:
        sql = extract_sql(content)
        if sql is None:
            turn.advance(TurnState.DONE)
            return self._reply(turn, ChatMessage.assistant(content))

        turn.advance(TurnState.VALIDATING)
        result = self.validator.validate(sql, schema)
        if not result.can_execute:
            logger.warning(f"Generated SQL rejected: {'; '.join(result.errors)}")
            self.audit.log_query_rejected(sql, result.errors, session_id=turn.session_id)
            turn.advance(TurnState.DONE)
            return self._reply(turn, ChatMessage.assistant(content))
        for warning in result.warnings:
            logger.info(f"Validation warning: {warning}")

        turn.advance(TurnState.EXECUTING)
        rows = self._execute(sql, turn.session_id)

        turn.advance(TurnState.MASKING)
        masked = self.masker.mask_results(rows, schema)

        turn.advance(TurnState.DONE)
        return self._reply(turn, ChatMessage.assistant(
            content,
            sql=sql,
            query_results=masked.masked_rows,
            masked_fields=masked.masked_field_names,
        ))

    def _execute(self, sql: str, session_id: Optional[str] = None) -> list[dict]:
        logger.info(f"Executing generated SQL: {sql[:200]}")
        started = time.perf_counter()
        try:
            rows = self.database.execute_query(sql)
        except Exception as e:
            self.audit.log_query_failed(sql, str(e), session_id=session_id)
            raise
        elapsed = time.perf_counter() - started
        self.audit.log_query_executed(sql, result_count=len(rows), execution_time=elapsed, session_id=session_id)
        return rows

    def _reply(self, turn: _Turn, message: ChatMessage) -> ChatMessage:
        self.audit.log_chat_response(
            message.content,
            sql=message.sql,
            masked_fields=message.masked_fields,
            session_id=turn.session_id,
        )
        return message

    def _fail(self, turn: _Turn, error: Exception) -> ChatMessage:
        detail = str(error) or type(error).__name__
        if TurnState.ERROR in TRANSITIONS[turn.state]:
            turn.advance(TurnState.ERROR)
        stage = turn.failed_in.value if turn.failed_in else turn.state.value
        logger.error(f"Chat turn failed during {stage}: {detail}")
        self.audit.log_error(
            detail,
            context={"stage": stage, "errorType": type(error).__name__},
            session_id=turn.session_id,
        )
        if turn.state == TurnState.ERROR:
            turn.advance(TurnState.DONE)
        return ChatMessage.error(detail)

    # --- Direct execution ---

    def execute_query(self, sql: str) -> MaskingResult:
        """Validate, execute and mask ``sql`` outside of a chat turn.

        Raises:
            ConfigurationError: If no schema is configured
            QueryRejectedError: If the statement is not valid read-only SQL
            ExecutionError: If the database fails
        """
        with self._lock:
            schema = self.schema
        if schema is None:
            raise ConfigurationError("Chat engine has no schema; call configure() first")

        result = self.validator.validate(sql, schema)
        if not result.can_execute:
            errors = result.errors or ["Statement is not read-only"]
            self.audit.log_query_rejected(sql, errors)
            raise QueryRejectedError(errors)

        rows = self._execute(sql)
        return self.masker.mask_results(rows, schema)

    def dispose(self) -> None:
        with self._lock:
            adapter = self.adapter
            self.adapter = None
            self.llm_config = None
        if adapter is not None:
            adapter.dispose()
