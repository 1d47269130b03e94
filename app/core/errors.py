"""Application-level exception types.

Domain errors raised by dependencies and routes; the exception handlers map
each subclass to an HTTP status and a consistent JSON envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    preset: str
    limit: int
    retry_after: int
    blocked_until: str
    reset_at: int
    provided_key_length: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class NotFoundAppError(AppError):
    """Raised when a referenced resource (e.g., a preset) does not exist."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RateLimitAppError(AppError):
    """Raised when a caller is denied by a rate limiter."""
