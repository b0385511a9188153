from __future__ import annotations

from typing import Any

from linkvault.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", "MISSING_FIELD", "token is required"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "invalid session token"),
    404: _response("Not found", "LINK_NOT_FOUND", "Link not found"),
    409: _response("Conflict", "INSUFFICIENT_INVENTORY", "partner has 2 unsold links but 5 were requested"),
    410: _response("Gone", "LINK_EXPIRED", "Link has expired"),
    422: _response(
        "Validation error",
        "REQUEST_VALIDATION_ERROR",
        "Validation error",
        details={"errors": [{"loc": ["body", "token"], "msg": "Field required", "type": "missing"}]},
    ),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
}
