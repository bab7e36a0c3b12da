from __future__ import annotations

from fastapi import APIRouter

from ratelimit_api.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Never rate limited, so load balancers and monitors are not throttled.
    Reports the configured counter store backend.
    """

    return {"status": "ok", "rate_limit_backend": settings.rate_limit.backend}
