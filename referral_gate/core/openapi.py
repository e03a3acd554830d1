"""OpenAPI customization.

Documents the session security scheme (cookie or Bearer token), marks every
operation as requiring it except the health probe, and adds the 429 response
the request filter can produce on rate-limited paths.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from fastapi import FastAPI

TAGS = [
    {"name": "Admin", "description": "Admin-only endpoints (role gated)."},
    {"name": "Health", "description": "Liveness checks."},
]

RATE_LIMITED_RESPONSE = {
    "description": "Rate limit exceeded; retry after the Retry-After delay.",
    "headers": {
        "Retry-After": {
            "description": "Seconds until the client's window resets.",
            "schema": {"type": "integer"},
        }
    },
}


def apply_openapi_customizations(
    app: FastAPI,
    *,
    session_cookie: str = "session",
    limited_prefixes: Sequence[str] = ("/api",),
) -> None:
    """Patch FastAPI's OpenAPI generation to add security and 429 docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "SessionCookie",
            {"type": "apiKey", "in": "cookie", "name": session_cookie},
        )
        security_schemes.setdefault("BearerToken", {"type": "http", "scheme": "bearer"})
        schema.setdefault("security", [{"SessionCookie": []}, {"BearerToken": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        tags.extend(tag for tag in TAGS if tag["name"] not in existing_tag_names)

        for path, methods in schema.get("paths", {}).items():
            for operation in methods.values():
                if not isinstance(operation, dict):
                    continue
                if path.endswith("/health"):
                    operation["security"] = []
                if any(path.startswith(prefix) for prefix in limited_prefixes):
                    operation.setdefault("responses", {}).setdefault("429", RATE_LIMITED_RESPONSE)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
