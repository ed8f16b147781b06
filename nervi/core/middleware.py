"""HTTP middleware for request ID propagation and timing.

Every request/response pair carries a correlation id so security events and
application logs for one request can be joined.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from nervi.core.config import settings
from nervi.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a request id and duration to each response.

    Uses the incoming ``X-Request-ID`` header (name configurable via
    ``LOG_REQUEST_ID_HEADER``) or generates a UUID4. The id lives in
    contextvars for the duration of the request and is cleared afterwards.

    Side Effects:
        - Adds the request id header to the response
        - Adds X-Request-Duration-ms to the response
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
