from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from complyrag.apps.api.response import error_response
from complyrag.core.errors import (
    ComplyError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ProviderConfigError,
    UnsupportedFormatError,
    UpstreamServiceError,
    ValidationError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific first; lookup walks this list with isinstance.
_DOMAIN_ERRORS: list[tuple[type[ComplyError], int, str]] = [
    (ValidationError, 400, "VALIDATION_ERROR"),
    (PermissionDenied, 403, "AUTH_FORBIDDEN"),
    (NotFoundError, 404, "NOT_FOUND"),
    (InvalidTransition, 409, "INVALID_TRANSITION"),
    (UnsupportedFormatError, 415, "UNSUPPORTED_MEDIA_TYPE"),
    (UpstreamServiceError, 502, "UPSTREAM_UNAVAILABLE"),
    (ProviderConfigError, 503, "PROVIDER_MISCONFIGURED"),
]


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _domain_details(exc: ComplyError) -> dict[str, Any] | None:
    if isinstance(exc, InvalidTransition):
        return {"current": exc.current, "target": exc.target}
    if isinstance(exc, UpstreamServiceError):
        return {"service": exc.service, "retryable": exc.retryable}
    return None


async def domain_exception_handler(request: Request, exc: ComplyError) -> JSONResponse:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            break
    else:
        status_code, code = 500, "INTERNAL_ERROR"
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
    payload = error_response(
        request=request, code=code, message=str(exc), details=_domain_details(exc)
    )
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    # Upload errors may carry raw bytes; the default encoder turns them into text.
    return JSONResponse(content=jsonable_encoder(payload), status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # No stack traces in responses; the log keeps them.
    logger.exception("request_unhandled path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
