"""Typed errors shared by the engine, the MCP tools and the HTTP API.

Every error carries an HTTP status code and a short machine-readable code so
that both outer surfaces can report it without guessing.
"""

from __future__ import annotations

from typing import Any, Optional


class JournalError(Exception):
    """Base exception for journal operations."""

    status_code: int = 500
    code: Optional[str] = None

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "status_code": self.status_code,
        }


class NotFoundError(JournalError):
    """Raised when a requested record does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[Any] = None):
        if identifier is not None:
            message = f"{resource} '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class ValidationError(JournalError):
    """Raised when input fails validation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, list[str]]] = None):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "details": self.details}


class UnauthorizedError(JournalError):
    """Raised when credentials are missing or rejected."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(JournalError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class ConflictError(JournalError):
    """Raised when a record with the same key already exists."""

    status_code = 409
    code = "CONFLICT"


class RateLimitError(JournalError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str = "Too many requests", retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ExternalServiceError(JournalError):
    """Raised when a hosted service (model provider, Linear) fails."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, original: Optional[BaseException] = None, detail: Optional[str] = None):
        message = f"External service error: {service}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.service = service
        self.original = original


class DatabaseError(JournalError):
    status_code = 500
    code = "DATABASE_ERROR"

    def __init__(self, operation: str, original: Optional[BaseException] = None):
        super().__init__(f"Database error during {operation}")
        self.operation = operation
        self.original = original


class ConfigError(JournalError):
    """Raised when required configuration is missing or invalid."""

    status_code = 500
    code = "CONFIG_ERROR"


def is_journal_error(error: object) -> bool:
    return isinstance(error, JournalError)


def get_error_message(error: object) -> str:
    """Extract a message from an exception, a string, or anything else."""
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, str):
        return error
    return "An unknown error occurred"
