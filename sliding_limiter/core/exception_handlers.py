"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceededAppError → 429 with the compact throttling body
  ``{"status": 429, "message": "Too Many Requests"}`` and X-RateLimit-* headers
- Other AppError subclasses → ``{"error": {...}}`` envelope (400, 500, 503)
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from sliding_limiter.core.config import settings
from sliding_limiter.core.errors import (
    AppError,
    ConfigurationAppError,
    RateLimitExceededAppError,
    StoreUnavailableAppError,
)
from sliding_limiter.core.logging import get_request_id
from sliding_limiter.core.rate_limit import LIMIT_HEADER, REMAINING_HEADER

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededAppError
) -> JSONResponse:
    """Render a denied rate limit decision as HTTP 429.

    Args:
        request: FastAPI request object.
        exc: Error carrying the decision's limit and retry hint.

    Returns:
        JSONResponse with status 429 and rate limit headers.
    """
    details = exc.details or {}
    headers = {
        LIMIT_HEADER: str(details.get("limit", settings.rate_limit.limit)),
        REMAINING_HEADER: "0",
    }
    if settings.rate_limit.include_retry_after and "retry_after" in details:
        headers["Retry-After"] = str(details["retry_after"])

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"status": status.HTTP_429_TOO_MANY_REQUESTS, "message": exc.message},
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - StoreUnavailableAppError → 503 Service Unavailable
    - ConfigurationAppError → 500 Internal Server Error
    - anything else → 400 Bad Request

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, StoreUnavailableAppError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, ConfigurationAppError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message, so no stack traces reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    429 handler wins over the generic AppError handler.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededAppError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
