from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field

from slanglab.domain.types import AccessDecision, Capability


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class AccessMeta(BaseModel):
    # Lets clients refresh their remaining-uses badge without a second call.
    capability: str
    remaining: int | str
    limit: int | None = None


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)
    access: AccessMeta | None = None


class ErrorDetail(BaseModel):
    # details carries reason, remaining, capability and required_plan for denials.
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # The middleware normally assigns one; handlers raised before it still need an id.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
    return request_id


def access_meta(
    capability: Capability,
    decision: AccessDecision,
    remaining_after: int | None = None,
) -> AccessMeta:
    remaining = remaining_after if remaining_after is not None else decision.remaining
    return AccessMeta(
        capability=capability.value,
        remaining="unlimited" if remaining is None else remaining,
        limit=decision.limit,
    )


def _meta(request: Request, access: AccessMeta | None = None) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request), access=access)
    return meta.model_dump(exclude_none=True)


def success_response(
    *,
    request: Request,
    data: Any,
    access: AccessMeta | None = None,
) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"data": data, "meta": _meta(request, access)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
