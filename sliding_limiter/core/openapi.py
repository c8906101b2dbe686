"""OpenAPI customization for rate limited operations.

Enriches the generated schema with:
- a reusable ``TooManyRequests`` response (429 body and X-RateLimit-* headers)
- rate limit headers on the success responses of limited operations
- tags metadata

Limited operations are recognized by the ``Limited`` tag, which the /api
router applies together with the rate limit dependency.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

LIMITED_TAG = "Limited"

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Maximum requests allowed per sliding window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to document rate limiting."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        responses = schema.setdefault("components", {}).setdefault("responses", {})
        responses.setdefault(
            "TooManyRequests",
            {
                "description": "Client exceeded its request quota for the current window.",
                "headers": {**_RATE_LIMIT_HEADERS, "Retry-After": {
                    "description": "Seconds to wait before retrying.",
                    "schema": {"type": "integer"},
                }},
                "content": {
                    "application/json": {
                        "example": {"status": 429, "message": "Too Many Requests"},
                    }
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": LIMITED_TAG, "description": "Endpoints subject to the per-client sliding window limit."},
            {"name": "Health", "description": "Liveness and readiness checks (never limited)."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for methods in schema.get("paths", {}).values():
            for operation in methods.values():
                if not isinstance(operation, dict) or LIMITED_TAG not in operation.get("tags", []):
                    continue
                op_responses = operation.setdefault("responses", {})
                op_responses["429"] = {"$ref": "#/components/responses/TooManyRequests"}
                ok = op_responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", {}).update(_RATE_LIMIT_HEADERS)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
