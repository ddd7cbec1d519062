from __future__ import annotations

from typing import Any

from privacycore.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Policy violation",
        code="ACCESS_REASON_REQUIRED",
        message="Access reason required for PHI access",
        details={"header": "X-Access-Reason"},
    ),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Accessor identity is required"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Admin access is required"),
    404: _response("Not found", code="NOT_FOUND", message="Resource not found"),
    409: _response(
        "Conflict",
        code="PACK_ALREADY_ASSIGNED",
        message="Compliance pack is already assigned to this tenant",
    ),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    500: _response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
    503: _response("Store unavailable", code="STORE_UNAVAILABLE", message="Store error during consent_check"),
}
