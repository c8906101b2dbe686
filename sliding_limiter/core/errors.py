"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to carry every field.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    retry_after: int
    backend: str
    operation: str
    request_id: str
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


class ConfigurationAppError(AppError):
    """Raised when rate limit configuration is invalid at startup."""


class StoreUnavailableAppError(AppError):
    """Raised by window stores when the shared store cannot be reached or times out."""


class RateLimitExceededAppError(AppError):
    """Raised at the HTTP boundary when a request is denied by the limiter.

    The limiter itself never raises this; it returns a denied decision. The
    FastAPI dependency converts that decision into this error so the
    exception handler can render the 429 response.
    """
