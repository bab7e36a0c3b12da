from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, Response

from ratelimit_api.core.auth import verify_api_key
from ratelimit_api.core.config import settings
from ratelimit_api.core.logging import hash_identifier
from ratelimit_api.core.rate_limit import (
    build_rate_limit_headers,
    enforce_rate_limit,
    resolve_client_identity,
    run_check,
)
from ratelimit_api.schemas.limits import LimitCheckRequest, LimitDecisionResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Limits"])


@router.post(
    "/limits/check",
    response_model=LimitDecisionResponse,
    dependencies=[Depends(verify_api_key)],
)
async def check_limit(
    payload: LimitCheckRequest,
    request: Request,
    response: Response,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> LimitDecisionResponse:
    """Consume one unit of a caller-defined fixed window.

    Lets other services delegate rate limiting: they pick the key, quota and
    window, and get the decision back. Keys are namespaced by the caller's
    identity so two callers never share a counter.

    A rejected check is not an error: the response is 200 with
    ``allowed=false`` and the caller decides what to do with it.

    Raises:
        CounterStoreAppError: 503 when the counter store backend is down.
    """
    identity = resolve_client_identity(request, x_api_key)
    # the caller key is hashed so its ":" can never shift into the identity part
    key = f"{settings.rate_limit.key_prefix}:check:{identity}:{hash_identifier(payload.key)}"

    decision = await run_check(key, payload.limit, payload.window_seconds)

    logger.info(
        "limits.check",
        extra={
            "key_hash": hash_identifier(key),
            "allowed": decision.allowed,
            "limit": decision.limit,
            "count": decision.count,
            "window_s": decision.window_seconds,
        },
    )

    if settings.rate_limit.include_headers:
        response.headers.update(build_rate_limit_headers(decision))

    return LimitDecisionResponse.from_decision(decision)


@router.get(
    "/ping",
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit)],
)
async def ping() -> dict:
    """Rate limited liveness probe.

    Counts against the caller's global window, so clients can read their
    current quota from the X-RateLimit-* headers.
    """

    return {"status": "ok"}
