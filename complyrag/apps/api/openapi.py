from __future__ import annotations

from typing import Any

from complyrag.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
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


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Invalid input",
        _error_example(code="VALIDATION_ERROR", message="query must not be empty"),
    ),
    401: _response(
        "Missing principal",
        _error_example(code="AUTH_UNAUTHORIZED", message="X-Subject-Id header is required"),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="AUTH_FORBIDDEN", message="no view access to document 5f0c"),
    ),
    404: _response(
        "Not found",
        _error_example(code="NOT_FOUND", message="document 5f0c not found"),
    ),
    409: _response(
        "Workflow conflict",
        _error_example(
            code="INVALID_TRANSITION",
            message="Transition draft -> approved is not allowed",
            details={"current": "draft", "target": "approved"},
        ),
    ),
    422: _response(
        "Request validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response(
        "Internal error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
    502: _response(
        "Upstream dependency failed",
        _error_example(
            code="UPSTREAM_UNAVAILABLE",
            message="embedding call timed out",
            details={"service": "embedding", "retryable": True},
        ),
    ),
}
