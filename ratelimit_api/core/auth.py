"""API key authentication for the /v1 routes.

Authentication is optional (``APP_API_KEY_REQUIRED``). When it is on, callers
must send one of the comma-separated ``APP_API_KEYS`` in ``X-API-Key``. The
same header, once verified, is what the rate limiter counts a caller against,
so an authenticated caller keeps one quota regardless of the IP it comes from.
"""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Header, HTTPException, status

from ratelimit_api.core.config import settings
from ratelimit_api.core.errors import AuthenticationAppError
from ratelimit_api.core.logging import hash_identifier

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> frozenset[str]:
    """Parse comma-separated API keys, ignoring blanks and surrounding spaces.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 , key3 "))
        ['key1', 'key2', 'key3']
        >>> parse_api_keys(None)
        frozenset()
    """
    if not keys_string:
        return frozenset()

    return frozenset(key.strip() for key in keys_string.split(",") if key.strip())


def _matches_any(provided_key: str, valid_keys: frozenset[str]) -> bool:
    # compare against every key so timing does not reveal which one is close
    matched = False
    for valid_key in valid_keys:
        matched |= secrets.compare_digest(provided_key.encode(), valid_key.encode())
    return matched


def is_accepted_api_key(provided_key: str | None) -> bool:
    """True only when authentication is on and ``provided_key`` is configured.

    Does not log; used where an unverified key must simply be ignored.
    """
    if not provided_key or not settings.app.api_key_required:
        return False

    valid_keys = parse_api_keys(settings.app.api_keys)
    return bool(valid_keys) and _matches_any(provided_key, valid_keys)


def validate_api_key(provided_key: str) -> None:
    """Check ``provided_key`` against the configured keys.

    No-op when authentication is disabled.

    Raises:
        AuthenticationAppError: If the key is unknown, or authentication is
            required but no keys are configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error("auth.misconfigured", extra={"reason": "api_keys_not_configured"})
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not _matches_any(provided_key, valid_keys):
        logger.warning(
            "auth.rejected",
            extra={"reason": "invalid_api_key", "api_key_hash": hash_identifier(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> str | None:
    """FastAPI dependency for API key authentication.

    Usage:
        @router.post("/limits/check", dependencies=[Depends(verify_api_key)])

    Returns:
        The verified key, or whatever was sent (possibly None) when
        authentication is disabled.

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required:
        return x_api_key

    if not x_api_key:
        logger.warning("auth.rejected", extra={"reason": "missing_api_key"})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    return x_api_key
