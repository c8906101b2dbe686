"""Endpoints subject to the per-client sliding window limit.

Every route on this router passes through ``enforce_rate_limit``; routes
outside it (e.g. health checks) are never limited.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from sliding_limiter.core.openapi import LIMITED_TAG
from sliding_limiter.core.rate_limit import enforce_rate_limit

router = APIRouter(
    prefix="/api",
    tags=[LIMITED_TAG],
    dependencies=[Depends(enforce_rate_limit)],
)


# PlainTextResponse as response_class (not a returned Response) so the
# X-RateLimit-* headers set by the dependency are merged into the reply.
@router.get("/hello", response_class=PlainTextResponse)
async def say_hello() -> str:
    return "Hello! Your request was successful."


@router.get("/world", response_class=PlainTextResponse)
async def say_world() -> str:
    return "Hello World! This is another limited endpoint."
