"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import of ``nervi.core.config`` so
the settings object is built from them instead of a local .env file.
"""

import os

# Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")


import pytest
from fastapi.testclient import TestClient

from nervi.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from nervi.core.app_factory import create_app


class FakeClock:
    """Deterministic clock (UNIX seconds) used to drive window expiry."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> InMemoryFixedWindowRateLimiter:
    """Fresh limiter per test; the sweeper thread is not started."""
    return InMemoryFixedWindowRateLimiter(clock=clock)


@pytest.fixture
def app(limiter: InMemoryFixedWindowRateLimiter):
    return create_app(rate_limiter=limiter)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def api_key_headers() -> dict[str, str]:
    return {"X-API-Key": "test-api-key-123"}
