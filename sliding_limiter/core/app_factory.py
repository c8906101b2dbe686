"""Application factory for the rate limiter service.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated app instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from sliding_limiter.api.routes import health_router, limited_router
from sliding_limiter.core.config import settings
from sliding_limiter.core.exception_handlers import setup_exception_handlers
from sliding_limiter.core.logging import configure_logging
from sliding_limiter.core.middleware import request_id_middleware
from sliding_limiter.core.openapi import apply_openapi_customizations
from sliding_limiter.core.rate_limit import close_rate_limiter, get_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the limiter at startup and release the store on shutdown.

    Building eagerly surfaces an invalid limit/window/backend as a startup
    failure instead of an error on the first limited request.
    """
    limiter = get_rate_limiter()
    logger.info(
        "rate_limit.configured",
        extra={
            "enabled": settings.rate_limit.enabled,
            "backend": settings.rate_limit.backend,
            "limit": settings.rate_limit.limit,
            "window_s": settings.rate_limit.window_seconds,
            "atomic": settings.rate_limit.atomic,
            "failure_policy": settings.rate_limit.failure_policy,
            "limiter": type(limiter).__name__,
        },
    )
    try:
        yield
    finally:
        await close_rate_limiter()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Sliding Window Rate Limiter",
        description=(
            "Per-client request quota over a sliding time window, coordinated "
            "through a shared Redis store so every worker process enforces the "
            "same budget. Limited endpoints live under /api and report "
            "X-RateLimit-Limit and X-RateLimit-Remaining headers."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limited_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
