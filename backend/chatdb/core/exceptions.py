"""Custom exceptions for the application."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when the engine or an adapter is used before it is configured."""

    pass


class ProviderError(Exception):
    """Raised when an LLM provider call fails or returns an unexpected payload."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ExecutionError(Exception):
    """Raised when a database operation fails."""

    pass


class QueryRejectedError(Exception):
    """Raised when a statement fails validation on a direct execution path."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Query rejected: " + "; ".join(errors))
        self.errors = list(errors)
