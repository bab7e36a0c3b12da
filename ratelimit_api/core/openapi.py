"""OpenAPI metadata and customization utilities.

Enriches the generated schema with tag metadata, the ``X-API-Key`` security
scheme and the rate limit response headers, keeping documentation concerns
out of the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

RATE_LIMIT_HEADERS_DOC: Dict[str, Dict[str, Any]] = {
    "X-RateLimit-Limit": {
        "description": "Maximum requests allowed in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "Seconds until the current window resets.",
        "schema": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
    - Marks all operations as requiring API Key by default, then exempts health
      endpoints by setting ``security: []``
    - Documents the X-RateLimit-* headers and the 429/503 responses on /v1 routes
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Provide your API key via the X-API-Key header.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Limits",
                "description": "Fixed-window rate limit checks and rate limited endpoints.",
            },
            {
                "name": "Health",
                "description": "Liveness checks (never rate limited).",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                    continue
                if path.startswith("/v1/"):
                    responses = method_obj.setdefault("responses", {})
                    for response_obj in responses.values():
                        response_obj.setdefault("headers", dict(RATE_LIMIT_HEADERS_DOC))
                    responses.setdefault(
                        "429",
                        {
                            "description": "Rate limit exceeded",
                            "headers": {
                                **RATE_LIMIT_HEADERS_DOC,
                                "Retry-After": {
                                    "description": "Seconds to wait before retrying.",
                                    "schema": {"type": "integer"},
                                },
                            },
                        },
                    )
                    responses.setdefault(
                        "503",
                        {"description": "Rate limit counter store unavailable"},
                    )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
