from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from slanglab.apps.api.response import error_response
from slanglab.core.errors import (
    ConfigurationError,
    EvidenceConfigMissingError,
    EvidenceProviderError,
    GeneratorConfigMissingError,
    GeneratorError,
    IntegrationUnavailableError,
    MalformedInputError,
    QuotaRaceLostError,
    SlangLabError,
    TransientBackendError,
)
from slanglab.domain.types import AccessDecision, Capability, DenialReason


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    402: "QUOTA_EXCEEDED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Denial reason -> (HTTP status, error code).
_DENIAL_STATUS: dict[DenialReason, tuple[int, str]] = {
    DenialReason.AUTHENTICATION_REQUIRED: (status.HTTP_401_UNAUTHORIZED, "AUTH_UNAUTHORIZED"),
    DenialReason.ADMIN_REQUIRED: (status.HTTP_403_FORBIDDEN, "ADMIN_REQUIRED"),
    DenialReason.PLAN_REQUIRED: (status.HTTP_403_FORBIDDEN, "PLAN_REQUIRED"),
    DenialReason.AGE_RESTRICTED: (status.HTTP_403_FORBIDDEN, "AGE_RESTRICTED"),
    DenialReason.QUOTA_EXCEEDED: (status.HTTP_402_PAYMENT_REQUIRED, "QUOTA_EXCEEDED"),
}

_DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.AUTHENTICATION_REQUIRED: "Sign in to use this feature",
    DenialReason.ADMIN_REQUIRED: "Admin access required",
    DenialReason.PLAN_REQUIRED: "Upgrade your plan to use this feature",
    DenialReason.AGE_RESTRICTED: "This feature is not available for your age group",
    DenialReason.QUOTA_EXCEEDED: "Usage limit reached for this period",
}


def decision_exception(decision: AccessDecision, capability: Capability) -> HTTPException:
    # Every denial carries its machine-readable reason for the presentation layer.
    if decision.pending:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "ACCESS_PENDING", "message": "Access is still being resolved; retry shortly"},
        )
    status_code, code = _DENIAL_STATUS[decision.reason]
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(
        status_code=status_code,
        detail={
            "code": code,
            "message": _DENIAL_MESSAGES[decision.reason],
            "capability": capability.value,
            **decision.to_dict(),
        },
        headers=headers,
    )


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


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
    return JSONResponse(content=jsonable_encoder(payload), status_code=422)


def _domain_error_status(exc: SlangLabError) -> tuple[int, str, str]:
    if isinstance(exc, TransientBackendError):
        # Never reported as a quota problem; the client should simply retry.
        return status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", "Temporarily unavailable, please retry"
    if isinstance(exc, MalformedInputError):
        return status.HTTP_400_BAD_REQUEST, "MALFORMED_INPUT", str(exc)
    if isinstance(exc, QuotaRaceLostError):
        return status.HTTP_402_PAYMENT_REQUIRED, "QUOTA_EXCEEDED", "Usage limit reached for this period"
    if isinstance(exc, (EvidenceConfigMissingError, GeneratorConfigMissingError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE, "INTEGRATION_NOT_CONFIGURED", str(exc)
    if isinstance(exc, (EvidenceProviderError, GeneratorError, IntegrationUnavailableError)):
        return status.HTTP_502_BAD_GATEWAY, "UPSTREAM_ERROR", "Upstream provider failed, please retry"
    if isinstance(exc, ConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR, "CONFIGURATION_ERROR", "Service misconfigured"
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error"


async def domain_exception_handler(request: Request, exc: SlangLabError) -> JSONResponse:
    status_code, code, message = _domain_error_status(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
