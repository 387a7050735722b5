"""OpenAPI customization helpers.

Gateway errors are translated by an exception handler rather than declared per route, so FastAPI
cannot see them. This module documents the ``{"detail", "code"}`` error body and attaches it to
every gateway and channel operation. It is documentation-only and does not change runtime
behavior.
"""

from __future__ import annotations

from typing import Any, Final

from fastapi.openapi.utils import get_openapi

GATEWAY_ERROR_SCHEMA_NAME: Final[str] = "GatewayError"
_DOCUMENTED_TAGS: Final[frozenset[str]] = frozenset({"gateways", "channels"})
_ERROR_RESPONSES: Final[tuple[tuple[str, str], ...]] = (
    ("404", "Member, channel or container not found"),
    ("409", "Gateway is not in a state that permits the operation"),
    ("422", "Missing provider credentials or invalid input"),
    ("502", "Container engine failure"),
)


def build_openapi(app_title: str, app_version: str, routes: Any) -> dict[str, Any]:
    """Return the OpenAPI document with gateway error responses filled in."""

    schema: dict[str, Any] = get_openapi(title=app_title, version=app_version, routes=routes)

    schemas = schema.setdefault("components", {}).setdefault("schemas", {})
    schemas.setdefault(
        GATEWAY_ERROR_SCHEMA_NAME,
        {
            "title": GATEWAY_ERROR_SCHEMA_NAME,
            "type": "object",
            "properties": {
                "detail": {"title": "Detail", "type": "string"},
                "code": {"title": "Code", "type": "string"},
            },
            "required": ["detail", "code"],
            "description": "Error body returned by gateway lifecycle and channel operations.",
        },
    )

    for _path, methods in (schema.get("paths") or {}).items():
        for _method, op in (methods or {}).items():
            if not isinstance(op, dict):
                continue
            if not _DOCUMENTED_TAGS.intersection(op.get("tags") or []):
                continue
            responses = op.setdefault("responses", {})
            for code, desc in _ERROR_RESPONSES:
                # FastAPI's own 422 validation schema stays when already present.
                responses.setdefault(
                    code,
                    {
                        "description": desc,
                        "content": {
                            "application/json": {
                                "schema": {"$ref": f"#/components/schemas/{GATEWAY_ERROR_SCHEMA_NAME}"},
                            },
                        },
                    },
                )

    return schema
