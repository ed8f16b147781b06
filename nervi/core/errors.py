"""Application-level exception types.

This module defines domain errors used across the service, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict

from nervi.adapters.rate_limit.base import RateLimitResult


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    endpoint: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


@dataclass
class RateLimitAppError(AppError):
    """Raised at the HTTP seam when a caller is over its rate limit.

    Attributes:
        endpoint: Logical endpoint name whose quota was exhausted.
        result: The denying limiter result (limit, reset time, retry hint).
    """

    endpoint: str = ""
    result: RateLimitResult | None = field(default=None, repr=False)

    @property
    def retry_after(self) -> int:
        if self.result is None or self.result.retry_after_seconds is None:
            return 0
        return self.result.retry_after_seconds
