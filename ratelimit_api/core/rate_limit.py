"""Rate limiting dependencies for FastAPI routes.

This module wires the fixed-window limiter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function/class only.
- Swap-friendly: the counter store (memory or Redis) is chosen by settings.
- Telemetry everywhere: X-RateLimit-* headers on allowed and rejected responses.

Rate limiting strategy:
- ``enforce_rate_limit``: global fixed-window limit per client identity.
- ``RateLimit(limit, window_seconds)``: per-route limit per client identity.
- Identity is the (hashed) API key once verified, otherwise the client IP.
- The first limiting dependency that runs for a request wins, so one request
  never consumes two budgets.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, Request, Response

from ratelimit_api.adapters.rate_limit.factory import create_counter_store
from ratelimit_api.core.auth import is_accepted_api_key
from ratelimit_api.core.config import settings
from ratelimit_api.core.errors import CounterStoreAppError, RateLimitExceededAppError
from ratelimit_api.core.logging import hash_identifier
from ratelimit_api.services.limiter import FixedWindowLimiter, LimitDecision

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "127.0.0.1"

_limiter: FixedWindowLimiter | None = None


def get_rate_limiter() -> FixedWindowLimiter:
    """Return the process-wide limiter, creating its store on first use.

    The instance is cached in-module to preserve counters across requests.
    """

    global _limiter

    if _limiter is None:
        store = create_counter_store(settings.rate_limit)
        _limiter = FixedWindowLimiter(store, lock_stripes=settings.rate_limit.lock_stripes)
        logger.info(
            "rate_limit.limiter_created",
            extra={"backend": store.backend_name},
        )

    return _limiter


async def shutdown_rate_limiter() -> None:
    """Destroy the cached limiter's store (timers, connections). Idempotent."""

    global _limiter

    limiter, _limiter = _limiter, None
    if limiter is not None:
        await limiter.close()
        logger.info("rate_limit.limiter_closed")


def resolve_client_identity(request: Request, x_api_key: str | None) -> str:
    """Resolve who the request counts against.

    An API key is the identity only when authentication is on and the key is
    one of the configured keys. Anything else falls back to the client IP, so
    rotating made-up keys never buys a fresh budget.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: ``api_key:<hash>`` or ``ip:<address>``.
    """

    if is_accepted_api_key(x_api_key):
        return f"api_key:{hash_identifier(x_api_key)}"

    if settings.rate_limit.trust_forwarded_headers:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return f"ip:{real_ip}"

    if request.client and request.client.host:
        return f"ip:{request.client.host}"

    return f"ip:{DEFAULT_CLIENT_IP}"


def build_global_key(identity: str) -> str:
    return f"{settings.rate_limit.key_prefix}:{identity}"


def build_route_key(request: Request, identity: str) -> str:
    """Key isolating one route for one identity.

    Uses the route template (``/items/{item_id}``) when routing has matched, so
    all concrete paths of a route share one budget.
    """

    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    return f"{settings.rate_limit.key_prefix}:{request.method}:{path}:{identity}"


def build_rate_limit_headers(decision: LimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_seconds),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.reset_seconds)
    return headers


async def run_check(key: str, limit: int, window_seconds: int) -> LimitDecision:
    """Run one limiter check, mapping backend outages to an AppError.

    Raises:
        CounterStoreAppError: If the counter store backend failed.
    """

    limiter = get_rate_limiter()
    store = limiter.store

    try:
        return await limiter.check(key, limit, window_seconds)
    except store.backend_errors as exc:
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "backend": store.backend_name,
                "error_type": type(exc).__name__,
                "key_hash": hash_identifier(key),
            },
        )
        raise CounterStoreAppError(
            code="rate_limit_store_unavailable",
            message="Rate limit store is unavailable. Try again later.",
            details={"backend": store.backend_name, "error_type": type(exc).__name__},
        ) from exc


async def apply_rate_limit(
    request: Request,
    response: Response,
    *,
    key: str,
    limit: int,
    window_seconds: int,
    scope: str,
) -> LimitDecision:
    """Consume one unit for ``key`` and attach telemetry or reject.

    Raises:
        RateLimitExceededAppError: When the decision rejects the request.
        CounterStoreAppError: When the counter store backend failed.
    """

    existing: LimitDecision | None = getattr(request.state, "rate_limit_decision", None)
    if existing is not None:
        return existing

    decision = await run_check(key, limit, window_seconds)
    request.state.rate_limit_decision = decision

    headers = build_rate_limit_headers(decision) if settings.rate_limit.include_headers else {}
    log_extra = {
        "scope": scope,
        "key_hash": hash_identifier(key),
        "limit": decision.limit,
        "count": decision.count,
        "remaining": decision.remaining,
        "window_s": decision.window_seconds,
        "reset_s": decision.reset_seconds,
    }

    if decision.allowed:
        logger.info("rate_limit.allowed", extra=log_extra)
        response.headers.update(headers)
        return decision

    logger.warning("rate_limit.exceeded", extra=log_extra)
    raise RateLimitExceededAppError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details={
            "limit": decision.limit,
            "window": decision.window_seconds,
            "remaining": 0,
            "reset": decision.reset_seconds,
        },
        headers=headers or None,
    )


async def enforce_rate_limit(
    request: Request,
    response: Response,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency enforcing the global per-identity limit.

    Raises:
        RateLimitExceededAppError: 429 when the identity's window is exhausted.
    """

    if not settings.rate_limit.enabled:
        return

    identity = resolve_client_identity(request, x_api_key)
    await apply_rate_limit(
        request,
        response,
        key=build_global_key(identity),
        limit=settings.rate_limit.requests,
        window_seconds=settings.rate_limit.window_seconds,
        scope="global",
    )


class RateLimit:
    """FastAPI dependency enforcing a per-route limit.

    Usage:
        @router.get("/search", dependencies=[Depends(RateLimit(limit=5, window_seconds=60))])

    List it before ``enforce_rate_limit`` to override the global limit on
    that route.

    Overrides only work when ``enforce_rate_limit`` is listed on the route
    itself. App and router dependencies (``FastAPI(dependencies=[...])``) run
    before route dependencies, so a global limit installed there always
    decides first and every ``RateLimit`` is skipped.
    """

    def __init__(self, limit: int, window_seconds: int) -> None:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self.limit = limit
        self.window_seconds = window_seconds

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"RateLimit(limit={self.limit}, window_seconds={self.window_seconds})"

    async def __call__(
        self,
        request: Request,
        response: Response,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        if not settings.rate_limit.enabled:
            return

        identity = resolve_client_identity(request, x_api_key)
        await apply_rate_limit(
            request,
            response,
            key=build_route_key(request, identity),
            limit=self.limit,
            window_seconds=self.window_seconds,
            scope="route",
        )
