"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the in-process store can later be swapped for a shared one (e.g., Redis)
without touching the routes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

UNKNOWN_IDENTIFIER = "unknown"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window expires.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None

    @property
    def reset_at_iso(self) -> str:
        """Window expiry as an ISO-8601 UTC timestamp."""
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()


class AbstractRateLimiter(ABC):
    """Interface for rate limiters keyed by ``(endpoint, identifier)``."""

    @abstractmethod
    def check(
        self,
        identifier: str | None,
        endpoint: str,
        limit: int,
        window_ms: int,
    ) -> RateLimitResult:
        """Count one request for the key and decide whether it may proceed.

        Args:
            identifier: Caller key (usually the forwarded client address).
                Falls back to ``"unknown"`` when empty.
            endpoint: Logical endpoint name the limit applies to.
            limit: Maximum number of requests per window.
            window_ms: Window duration in milliseconds.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def reject(self, identifier: str | None, endpoint: str) -> bool:
        """Drop the entry for a key so the next check opens a fresh window.

        Returns:
            True if an entry existed and was removed.
        """
        raise NotImplementedError

    def start(self) -> None:  # noqa: B027 - optional hook
        """Start any background maintenance. No-op by default."""

    def stop(self) -> None:  # noqa: B027 - optional hook
        """Stop any background maintenance. No-op by default."""

    def stats(self) -> dict[str, int | float]:
        """Return backend counters. Empty by default."""
        return {}
