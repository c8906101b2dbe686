from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from sliding_limiter.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Never rate limited and never touches the window store, so load balancers
    keep routing to an instance while the store recovers.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """Readiness check: verifies the window store answers a ping.

    Returns:
        JSONResponse: 200 when the store is reachable, 503 otherwise.
    """

    limiter = get_rate_limiter()
    store = getattr(limiter, "store", None)
    backend = getattr(store, "backend", "unknown")

    if await limiter.ready():
        return JSONResponse({"status": "ok", "store": backend})
    return JSONResponse({"status": "unavailable", "store": backend}, status_code=503)
