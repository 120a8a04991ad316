"""Core infrastructure module.

Contains configuration, chat models, local storage and exceptions. The MySQL
capability lives in ``chatdb.core.db`` and is imported from there directly.
"""

from .config import (
    ConnectionConfig,
    Settings,
    clear_settings_cache,
    get_cached_settings,
    get_settings,
)
from .exceptions import ConfigurationError, ExecutionError, ProviderError, QueryRejectedError
from .models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    ConnectRequest,
    LLMConfigureRequest,
    MessageRole,
    MessageStatus,
    QueryValidationRequest,
    SchemaUpdateRequest,
)
from .storage import LocalStorage

__all__ = [
    # Config
    "ConnectionConfig",
    "Settings",
    "clear_settings_cache",
    "get_cached_settings",
    "get_settings",
    # Exceptions
    "ConfigurationError",
    "ExecutionError",
    "ProviderError",
    "QueryRejectedError",
    # Models
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatSession",
    "ConnectRequest",
    "LLMConfigureRequest",
    "MessageRole",
    "MessageStatus",
    "QueryValidationRequest",
    "SchemaUpdateRequest",
    # Storage
    "LocalStorage",
]
