"""Application-level exception types.

Every error carries a stable ``code`` and the HTTP status it maps to, so the
exception handlers never need to know the concrete class.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context returned to clients under ``error.details``.

    Rate limit rejections fill ``limit``/``window``/``remaining``/``reset``;
    store outages fill ``backend``/``error_type``.
    """

    hint: str
    limit: int
    window: int
    remaining: int
    reset: int
    backend: str
    error_type: str
    context: dict[str, Any]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    status_code: ClassVar[int] = 400

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # str(error) should be the message in logs and tracebacks
        super().__init__(self.message)

    def response_headers(self) -> dict[str, str] | None:
        return None


class ValidationAppError(AppError):
    """Raised when input or configuration validation fails."""


class AuthenticationAppError(AppError):
    """Raised when the API key is missing, unknown, or cannot be checked."""

    status_code: ClassVar[int] = 403


@dataclass
class RateLimitExceededAppError(AppError):
    """A limiter decision rejected the request.

    Attributes:
        headers: X-RateLimit-* and Retry-After headers for the 429 response,
            or None when header emission is disabled.
    """

    status_code: ClassVar[int] = 429

    headers: dict[str, str] | None = None

    def response_headers(self) -> dict[str, str] | None:
        return self.headers


class CounterStoreAppError(AppError):
    """The counter store backend failed; requests are neither admitted nor counted."""

    status_code: ClassVar[int] = 503
