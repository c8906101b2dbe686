"""HTTP middleware for request correlation.

Every request/response pair carries a correlation id so throttling events
logged by the rate limiter can be matched to the request that caused them.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from sliding_limiter.core.config import settings
from sliding_limiter.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate or generate the request id and time the request.

    The incoming id header (``LOG_REQUEST_ID_HEADER``, default X-Request-ID)
    is reused when present, otherwise a UUID4 is generated. The id lives in a
    context variable for the duration of the request and is echoed on the
    response together with ``X-Request-Duration-ms``. Throttled (429)
    responses carry both headers as well.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with correlation headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}"
    )
    return response
