"""HTTP middleware binding a correlation id to each request.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from ratelimit_api.core.config import settings
from ratelimit_api.core.logging import reset_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind the request id for the duration of the request.

    The id comes from the configured header (``X-Request-ID`` by default) or
    is generated. It is echoed back together with the handling time, on
    rejected (429/503) responses as well, so clients can quote it.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or uuid.uuid4().hex
    token = set_request_id(request_id)
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        reset_request_id(token)

    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{elapsed_ms:.2f}")
    return response
