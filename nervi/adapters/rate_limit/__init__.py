"""Rate limiting adapters.

This package provides a small abstraction layer so the service can run with
an in-process limiter and later migrate to Redis or another shared store
without changing the API layer.
"""

from nervi.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from nervi.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from nervi.adapters.rate_limit.presets import PRESETS, RateLimitPreset, get_preset

__all__ = [
    "AbstractRateLimiter",
    "InMemoryFixedWindowRateLimiter",
    "PRESETS",
    "RateLimitPreset",
    "RateLimitResult",
    "get_preset",
]
