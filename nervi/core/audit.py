"""Security event logging for audit trails.

Security events are always emitted, independent of the verbosity chosen for
application loggers, and never carry raw client addresses.
"""

from __future__ import annotations

import logging
from typing import Any

SECURITY_LOGGER_NAME = "nervi.security"

RATE_LIMIT_EXCEEDED = "security.rate_limit.exceeded"
RATE_LIMIT_CLEARED = "security.rate_limit.cleared"
UNAUTHORIZED_ACCESS = "security.unauthorized"

_PARTIAL_IDENTIFIER_CHARS = 10

security_logger = logging.getLogger(SECURITY_LOGGER_NAME)


def partial_identifier(identifier: str | None) -> str:
    """Truncate a client identifier so it can be logged.

    Examples:
        >>> partial_identifier("203.0.113.195")
        '203.0.113....'
        >>> partial_identifier(None)
        'unknown...'
    """

    return f"{(identifier or 'unknown')[:_PARTIAL_IDENTIFIER_CHARS]}..."


def log_security_event(event: str, **fields: Any) -> None:
    """Emit a structured security event.

    Args:
        event: Stable event name (e.g. ``security.rate_limit.exceeded``).
        **fields: Structured context. Pass identifiers through
            :func:`partial_identifier` first.
    """

    security_logger.warning(
        event,
        extra={"security_event": True, "event": event, **fields},
    )
