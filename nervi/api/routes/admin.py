from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from nervi.adapters.rate_limit.presets import PRESETS
from nervi.core.audit import RATE_LIMIT_CLEARED, log_security_event, partial_identifier
from nervi.core.auth import verify_api_key
from nervi.core.config import settings
from nervi.core.rate_limit import get_rate_limiter, rate_limit
from nervi.schemas.rate_limit import (
    RateLimitPresetInfo,
    RateLimitStatsResponse,
    ResetRateLimitRequest,
    ResetRateLimitResponse,
)

# The rate limit runs before the API key check so failed key guesses are counted.
router = APIRouter(prefix="/admin/rate-limits", tags=["Admin"])


@router.post(
    "/reset",
    response_model=ResetRateLimitResponse,
    dependencies=[Depends(rate_limit("strict")), Depends(verify_api_key)],
)
async def reset_rate_limit(payload: ResetRateLimitRequest, request: Request) -> ResetRateLimitResponse:
    """Clear a client's entry so its next request opens a fresh window.

    Intended for operators unblocking a legitimate user after a lockout.
    """
    limiter = get_rate_limiter(request)
    cleared = limiter.reject(payload.identifier, payload.endpoint)

    log_security_event(
        RATE_LIMIT_CLEARED,
        endpoint=payload.endpoint,
        identifier=partial_identifier(payload.identifier),
        cleared=cleared,
    )

    return ResetRateLimitResponse(
        cleared=cleared,
        endpoint=payload.endpoint,
        identifier=partial_identifier(payload.identifier),
    )


@router.get(
    "/stats",
    response_model=RateLimitStatsResponse,
    dependencies=[Depends(rate_limit("api")), Depends(verify_api_key)],
)
async def rate_limit_stats(request: Request) -> RateLimitStatsResponse:
    """Report limiter counters and the configured presets."""
    limiter = get_rate_limiter(request)
    stats = limiter.stats()

    return RateLimitStatsResponse(
        enabled=settings.app.rate_limit_enabled,
        entries=int(stats.get("entries", 0)),
        sweeps=int(stats.get("sweeps", 0)),
        evictions=int(stats.get("evictions", 0)),
        denials=int(stats.get("denials", 0)),
        sweep_interval_seconds=stats.get("sweep_interval_seconds"),
        presets=[
            RateLimitPresetInfo(name=p.name, limit=p.limit, window_ms=p.window_ms)
            for p in PRESETS.values()
        ],
    )
