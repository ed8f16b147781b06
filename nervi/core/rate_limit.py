"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency built from a preset.
- Injected state: the limiter instance lives on ``app.state`` (created by the
  app factory), never in a module global, so each app (and each test) owns
  its own counters.
- Deny early: the guard runs before the route body, so a denied request
  performs none of the route's side effects.

Client identity is the first ``X-Forwarded-For`` hop, then ``X-Real-IP``,
then the socket peer. Requests with none of these share the ``"unknown"``
bucket.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import Request, Response

from nervi.adapters.rate_limit.base import (
    UNKNOWN_IDENTIFIER,
    AbstractRateLimiter,
    RateLimitResult,
)
from nervi.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from nervi.adapters.rate_limit.presets import RateLimitPreset, get_preset
from nervi.core.audit import partial_identifier
from nervi.core.config import settings
from nervi.core.errors import RateLimitAppError

logger = logging.getLogger(__name__)

RateLimitDependency = Callable[[Request, Response], Awaitable[RateLimitResult | None]]


def build_rate_limiter() -> InMemoryFixedWindowRateLimiter:
    """Create a limiter configured from application settings."""

    return InMemoryFixedWindowRateLimiter(
        sweep_interval_seconds=settings.app.rate_limit_sweep_interval_seconds,
        shards=settings.app.rate_limit_shards,
    )


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter owned by the application serving ``request``.

    Raises:
        RuntimeError: If the application was built without a limiter.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("rate limiter not configured on app.state")
    return limiter


def get_client_identifier(request: Request) -> str:
    """Derive the caller identifier for rate limiting.

    The value is treated as an opaque string and never validated as an IP.

    Args:
        request: FastAPI request.

    Returns:
        str: Client identifier, or ``"unknown"`` when none is available.
    """

    if settings.app.trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IDENTIFIER


def rate_limit(preset: RateLimitPreset | str) -> RateLimitDependency:
    """Build a dependency enforcing a named preset.

    Usage:
        @router.post("/export", dependencies=[Depends(rate_limit("strict"))])

    Raises:
        KeyError: If ``preset`` names an unknown preset.
    """

    if isinstance(preset, str):
        preset = get_preset(preset)
    return _build_dependency(preset.name, preset.limit, preset.window_ms)


def rate_limit_custom(endpoint: str, limit: int, window_ms: int) -> RateLimitDependency:
    """Build a dependency enforcing an explicit ``(limit, window_ms)`` pair."""

    return rate_limit(RateLimitPreset(name=endpoint, limit=limit, window_ms=window_ms))


def _build_dependency(endpoint: str, limit: int, window_ms: int) -> RateLimitDependency:
    async def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult | None:
        """Consume one unit of the caller's budget or raise HTTP 429.

        Raises:
            RateLimitAppError: When the caller is over its limit.
        """

        if not settings.app.rate_limit_enabled:
            return None

        limiter = get_rate_limiter(request)
        identifier = get_client_identifier(request)
        result = limiter.check(identifier, endpoint, limit, window_ms)

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "endpoint": endpoint,
                    "identifier": partial_identifier(identifier),
                    "limit": result.limit,
                    "remaining": result.remaining,
                },
            )
            if settings.app.rate_limit_include_headers:
                response.headers["X-RateLimit-Limit"] = str(result.limit)
                response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            return result

        raise RateLimitAppError(
            code="rate_limit_exceeded",
            message="Too many requests. Please try again later.",
            details={"endpoint": endpoint, "retry_after": result.retry_after_seconds or 0},
            endpoint=endpoint,
            result=result,
        )

    return enforce_rate_limit
