"""Global exception handlers for consistent error responses.

Design:
- RateLimitAppError → 429 with Retry-After / X-RateLimit-* headers
- Other AppError subclasses → 400 or 403
- Unexpected Exception → generic 500 (safety net)
- Error bodies include request_id for tracing
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nervi.core.errors import AppError, AuthenticationAppError, RateLimitAppError
from nervi.core.logging import get_request_id

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


async def rate_limit_error_handler(request: Request, exc: RateLimitAppError) -> JSONResponse:
    """Turn a rate limit denial into the 429 contract.

    Body is ``{"error": ..., "retryAfter": seconds}`` and the headers carry
    the retry hint, the limit, ``X-RateLimit-Remaining: 0`` and the ISO
    window reset time.
    """
    retry_after = exc.retry_after
    headers = {"Retry-After": str(retry_after), "X-RateLimit-Remaining": "0"}
    if exc.result is not None:
        headers["X-RateLimit-Limit"] = str(exc.result.limit)
        headers["X-RateLimit-Reset"] = exc.result.reset_at_iso

    logger.info(
        "rate_limit.denied_response",
        extra={
            "endpoint": exc.endpoint,
            "retry_after_s": retry_after,
            "request_path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=429,
        content={"error": RATE_LIMIT_MESSAGE, "retryAfter": retry_after},
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationAppError → 403 Forbidden (authorization fault)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 403 if isinstance(exc, AuthenticationAppError) else 400

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
    """Fallback handler for unexpected errors.

    Logs the error type for debugging and returns a generic message, with no
    stack trace sent to the client.
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
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    RateLimitAppError handler wins over the AppError one.
    """
    app.exception_handler(RateLimitAppError)(rate_limit_error_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
