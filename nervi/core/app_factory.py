"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the rate limiter's lifecycle: the limiter is created per app, its
background sweep starts with the app and is stopped on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from nervi.adapters.rate_limit.base import AbstractRateLimiter
from nervi.api.routes import admin_router, health_router
from nervi.core.config import settings
from nervi.core.exception_handlers import setup_exception_handlers
from nervi.core.logging import configure_logging
from nervi.core.middleware import request_id_middleware
from nervi.core.openapi import apply_openapi_customizations
from nervi.core.rate_limit import build_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    limiter: AbstractRateLimiter = app.state.rate_limiter
    limiter.start()
    logger.info("app.startup", extra={"app_env": settings.app_env})
    try:
        yield
    finally:
        limiter.stop()
        logger.info("app.shutdown")


def create_app(rate_limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Limiter to inject; a fresh in-memory limiter built from
            settings is used when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Nervi API",
        description=(
            "Nervi nervous-system regulation service. Sensitive endpoints are "
            "guarded by a per-client fixed-window rate limiter; operator "
            "endpoints require X-API-Key."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    if rate_limiter is None:
        rate_limiter = build_rate_limiter()
    app.state.rate_limiter = rate_limiter

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
