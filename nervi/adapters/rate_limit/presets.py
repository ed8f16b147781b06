"""Named rate limit policies.

Each preset binds a fixed ``(limit, window)`` pair to a logical endpoint
name. The preset name is also the endpoint part of the limiter key, so two
presets never share counters.
"""

from __future__ import annotations

from dataclasses import dataclass

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@dataclass(frozen=True)
class RateLimitPreset:
    """A named ``(limit, window_ms)`` policy."""

    name: str
    limit: int
    window_ms: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("preset name must be a non-empty string")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")


# Login attempts: 5 per 15 minutes
LOGIN = RateLimitPreset(name="login", limit=5, window_ms=15 * MINUTE_MS)
# Signup: 3 accounts per hour per client
SIGNUP = RateLimitPreset(name="signup", limit=3, window_ms=HOUR_MS)
# Password reset: 3 attempts per hour
PASSWORD_RESET = RateLimitPreset(name="password-reset", limit=3, window_ms=HOUR_MS)
# General API traffic: 60 per minute
API = RateLimitPreset(name="api", limit=60, window_ms=MINUTE_MS)
# Sensitive account mutations (export, delete): 10 per hour
STRICT = RateLimitPreset(name="strict", limit=10, window_ms=HOUR_MS)

PRESETS: dict[str, RateLimitPreset] = {
    preset.name: preset for preset in (LOGIN, SIGNUP, PASSWORD_RESET, API, STRICT)
}


def get_preset(name: str) -> RateLimitPreset:
    """Look up a preset by name.

    Raises:
        KeyError: If no preset is registered under ``name``.
    """
    try:
        return PRESETS[name]
    except KeyError:
        raise KeyError(
            f"unknown rate limit preset {name!r}; expected one of {sorted(PRESETS)}"
        ) from None
