"""Pydantic schemas for rate limit operator endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ResetRateLimitRequest(BaseModel):
    """Clear one ``(endpoint, identifier)`` entry."""

    identifier: str = Field(
        ...,
        min_length=1,
        description="Client identifier (usually the forwarded client address).",
    )
    endpoint: str = Field(
        ...,
        min_length=1,
        description="Logical endpoint / preset name, e.g. 'signup' or 'strict'.",
    )


class ResetRateLimitResponse(BaseModel):
    cleared: bool = Field(..., description="Whether an entry existed and was removed.")
    endpoint: str
    identifier: str = Field(
        ..., description="Truncated identifier; raw addresses are never echoed back."
    )


class RateLimitPresetInfo(BaseModel):
    name: str
    limit: int
    window_ms: int


class RateLimitStatsResponse(BaseModel):
    """Limiter counters. Contains no client identifiers."""

    enabled: bool
    entries: int
    sweeps: int = 0
    evictions: int = 0
    denials: int = 0
    sweep_interval_seconds: float | None = None
    presets: list[RateLimitPresetInfo] = Field(default_factory=list)
