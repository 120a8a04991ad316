"""Chat data models shared by the engine, storage and the HTTP layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
import itertools
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GENERIC_ERROR_CONTENT = "An error occurred while processing your request."
DEFAULT_SESSION_TITLE = "New conversation"
TITLE_PREVIEW_LENGTH = 30

_id_sequence = itertools.count()


def new_id() -> str:
    """Client-side id: nanosecond timestamp plus a process-local sequence."""
    return f"{time.time_ns()}-{next(_id_sequence)}"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChatMessage(_FrozenModel):
    """A single chat message. Never mutated; replaced wholesale in a session."""

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    status: MessageStatus = MessageStatus.SENT
    sql: Optional[str] = None
    query_results: Optional[list[dict[str, Any]]] = None
    masked_fields: Optional[list[str]] = None
    error_message: Optional[str] = None

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER

    @property
    def is_assistant(self) -> bool:
        return self.role == MessageRole.ASSISTANT

    @property
    def has_sql(self) -> bool:
        return bool(self.sql)

    @property
    def has_query_results(self) -> bool:
        return bool(self.query_results)

    @property
    def has_error(self) -> bool:
        return self.status == MessageStatus.ERROR or self.error_message is not None

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content, status=MessageStatus.SENDING)

    @classmethod
    def assistant(
        cls,
        content: str,
        sql: str | None = None,
        query_results: list[dict[str, Any]] | None = None,
        masked_fields: list[str] | None = None,
    ) -> "ChatMessage":
        return cls(
            role=MessageRole.ASSISTANT,
            content=content,
            sql=sql,
            query_results=query_results,
            masked_fields=masked_fields,
        )

    @classmethod
    def error(cls, error_message: str) -> "ChatMessage":
        """Error reply: generic content, diagnostic detail only in error_message."""
        return cls(
            role=MessageRole.ASSISTANT,
            content=GENERIC_ERROR_CONTENT,
            status=MessageStatus.ERROR,
            error_message=error_message,
        )

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls.model_validate(data)


class ChatSession(_FrozenModel):
    """A conversation. Every change returns a new session object."""

    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_SESSION_TITLE
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    messages: tuple[ChatMessage, ...] = ()
    database_name: Optional[str] = None
    llm_provider: Optional[str] = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def last_message(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.created_at

    @classmethod
    def create(cls, database_name: str | None = None, llm_provider: str | None = None) -> "ChatSession":
        return cls(database_name=database_name, llm_provider=llm_provider)

    def add_message(self, message: ChatMessage) -> "ChatSession":
        update: dict[str, Any] = {
            "messages": (*self.messages, message),
            "updated_at": datetime.now(),
        }
        # First user message names the conversation
        if not self.messages and message.is_user and self.title == DEFAULT_SESSION_TITLE:
            content = message.content
            if len(content) > TITLE_PREVIEW_LENGTH:
                content = content[:TITLE_PREVIEW_LENGTH] + "..."
            update["title"] = content
        return self.model_copy(update=update)

    def update_last_message(self, message: ChatMessage) -> "ChatSession":
        if not self.messages:
            return self
        return self.model_copy(
            update={"messages": (*self.messages[:-1], message), "updated_at": datetime.now()}
        )

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> "ChatSession":
        return cls.model_validate(data)


# --- HTTP request/response models ---

class ChatRequest(BaseModel):
    message: str
    session_id: str | None = None


class ChatResponse(BaseModel):
    session_id: str
    message: dict[str, Any]


class QueryValidationRequest(BaseModel):
    sql: str


class ConnectRequest(BaseModel):
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    include_sample_data: bool = True


class LLMConfigureRequest(BaseModel):
    provider: str
    model: str | None = None
    api_key: str | None = None
    endpoint: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    validate_key: bool = False


class SchemaUpdateRequest(BaseModel):
    """Full catalog document as produced by ``SchemaCatalog.to_dict``."""
    catalog: dict[str, Any]
