from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the lifetime of the process-wide rate limiter's counter store.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ratelimit_api.api.routes import health_router, limits_router
from ratelimit_api.core.config import settings
from ratelimit_api.core.exception_handlers import setup_exception_handlers
from ratelimit_api.core.logging import configure_logging
from ratelimit_api.core.middleware import request_id_middleware
from ratelimit_api.core.openapi import apply_openapi_customizations
from ratelimit_api.core.rate_limit import shutdown_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "app.startup",
        extra={
            "app_env": settings.app_env,
            "rate_limit_backend": settings.rate_limit.backend,
            "rate_limit_enabled": settings.rate_limit.enabled,
        },
    )
    try:
        yield
    finally:
        # Stops the in-memory sweeper / closes the Redis connection pool
        await shutdown_rate_limiter()
        logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Rate Limit API",
        description=(
            "Fixed-window request rate limiting backed by an in-process or Redis "
            "counter store. Every rate limited response carries X-RateLimit-Limit, "
            "X-RateLimit-Remaining and X-RateLimit-Reset headers; rejected requests "
            "get HTTP 429 with Retry-After."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
