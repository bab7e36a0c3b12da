"""Global exception handlers for consistent error responses.

Every error body has the shape::

    {"error": {"code": ..., "message": ..., "details": {...}?, "request_id": ...}}

- AppError subclasses use their own ``status_code`` (400, 403, 429, 503)
- 429 responses keep the X-RateLimit-* / Retry-After headers of the decision
- Unexpected Exception → generic 500 (safety net)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ratelimit_api.core.errors import AppError
from ratelimit_api.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, details: dict | None = None) -> dict:
    error: dict = {"code": code, "message": message}
    if details:
        error["details"] = details
    error["request_id"] = get_request_id()
    return {"error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError with the status code it declares.

    Rejections (429) are not logged here; the rate limit dependency already
    logged the decision with its telemetry.
    """
    if exc.status_code != 429:
        logger.warning(
            "app_error_handled",
            extra={
                "error_code": exc.code,
                "error_message": exc.message,
                "status_code": exc.status_code,
                "request_path": request.url.path,
            },
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message, exc.details),
        headers=exc.response_headers(),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the failure with its traceback and returns a generic message; nothing
    from the exception reaches the client.
    """
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with FastAPI app."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
