"""Rate limiting dependency for FastAPI routes.

This module wires the sliding window limiter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the window store (Redis or in-memory) sits behind an
  abstract interface.
- Path scoping is the router's job: only routers that declare
  ``Depends(enforce_rate_limit)`` are limited.

Identity: the first address of the forwarded-address header when present,
otherwise the direct peer address.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from sliding_limiter.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from sliding_limiter.adapters.rate_limit.factory import create_window_store
from sliding_limiter.core.config import RateLimitSettings, settings
from sliding_limiter.core.errors import RateLimitExceededAppError
from sliding_limiter.core.logging import identity_hash
from sliding_limiter.services.sliding_window import SlidingWindowRateLimiter
from sliding_limiter.utils.client_ip import resolve_client_identity

logger = logging.getLogger(__name__)

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"


_limiter: AbstractRateLimiter | None = None
_limiter_config: RateLimitSettings | None = None


def get_rate_limiter() -> AbstractRateLimiter:
    """Return the process-wide rate limiter instance.

    The instance only holds the store client; all counting state lives in
    the store. If configuration changes (primarily in tests), the limiter is
    rebuilt.

    Returns:
        AbstractRateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    config = settings.rate_limit

    if _limiter is None or _limiter_config != config:
        _limiter = SlidingWindowRateLimiter(
            create_window_store(config.backend),
            limit=config.limit,
            window_seconds=config.window_seconds,
            key_prefix=config.key_prefix,
            atomic=config.atomic,
            failure_policy=config.failure_policy,
            store_timeout_seconds=config.store_timeout_seconds,
        )
        _limiter_config = config

    return _limiter


async def close_rate_limiter() -> None:
    """Close the cached limiter's store and forget the instance."""

    global _limiter, _limiter_config

    if _limiter is not None:
        await _limiter.close()
    _limiter = None
    _limiter_config = None


def resolve_request_identity(request: Request) -> str:
    """Resolve the rate limit identity for the current request."""

    forwarded = request.headers.get(settings.rate_limit.forwarded_header)
    peer = request.client.host if request.client else None
    return resolve_client_identity(forwarded, peer)


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        LIMIT_HEADER: str(decision.limit),
        REMAINING_HEADER: str(decision.remaining),
    }


async def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing the sliding window limit.

    When enabled, records one request against the caller's budget. Admitted
    requests get X-RateLimit-* headers on the response; denied requests raise
    RateLimitExceededAppError, rendered as HTTP 429 by the exception handler.

    Args:
        request: FastAPI request.
        response: Response whose headers are merged into the endpoint result.

    Raises:
        RateLimitExceededAppError: When the caller exhausted the window.
    """

    if not settings.rate_limit.enabled:
        return

    limiter = get_rate_limiter()
    identity = resolve_request_identity(request)
    decision = await limiter.check(identity)
    request.state.rate_limit = decision

    log_extra = {
        "key_hash": identity_hash(identity),
        "limit": decision.limit,
        "remaining": decision.remaining,
        "window_s": settings.rate_limit.window_seconds,
        "degraded": decision.degraded,
        "path": request.url.path,
    }

    if decision.allowed:
        logger.debug("rate_limit.allowed", extra=log_extra)
        response.headers.update(rate_limit_headers(decision))
        return

    if decision.degraded:
        # Fail-closed outage denial, not a spent quota
        logger.warning("rate_limit.denied_store_unavailable", extra=log_extra)
    else:
        logger.warning("rate_limit.exceeded", extra=log_extra)
    raise RateLimitExceededAppError(
        code="rate_limit_exceeded",
        message="Too Many Requests",
        details={
            "limit": decision.limit,
            "remaining": 0,
            "retry_after": decision.reset_after_seconds,
        },
    )
