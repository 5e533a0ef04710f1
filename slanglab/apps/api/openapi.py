from __future__ import annotations

from typing import Any

from slanglab.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Malformed input", _error_example(code="MALFORMED_INPUT", message="Unknown capability: 'teleport'")),
    401: _response(
        "Authentication required",
        _error_example(
            code="AUTH_UNAUTHORIZED",
            message="Sign in to use this feature",
            details={"capability": "ai_creation", "reason": "authentication_required"},
        ),
    ),
    402: _response(
        "Quota exceeded",
        _error_example(
            code="QUOTA_EXCEEDED",
            message="Usage limit reached for this period",
            details={"capability": "search", "reason": "quota_exceeded", "limit": 3, "remaining": 0},
        ),
    ),
    403: _response(
        "Plan, role or age policy denied",
        _error_example(
            code="PLAN_REQUIRED",
            message="Upgrade your plan to use this feature",
            details={"capability": "tracking", "reason": "plan_required", "required_plan": "LabPro"},
        ),
    ),
    404: _response("Not found", _error_example(code="NOT_FOUND", message="Resource not found")),
    422: _response("Validation error", _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error")),
    500: _response("Internal server error", _error_example(code="INTERNAL_ERROR", message="Internal server error")),
    503: _response(
        "Backend temporarily unavailable",
        _error_example(code="SERVICE_UNAVAILABLE", message="Temporarily unavailable, please retry"),
    ),
}
