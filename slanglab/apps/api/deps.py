from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.errors import decision_exception
from slanglab.core.config import get_settings
from slanglab.domain.types import Capability, Principal
from slanglab.persistence.db import get_session
from slanglab.services.anonymous_quota import normalize_client_id
from slanglab.services.auth import resolve_identity
from slanglab.services.entitlements import EntitlementService, get_entitlement_service
from slanglab.services.principals import load_principal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def get_optional_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal | None:
    # No Authorization header means anonymous; a bad token is always a 401.
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get(settings.auth_header))
    if token is None:
        return None
    identity = resolve_identity(token)
    if identity is None:
        raise _auth_error("Invalid or expired access token")
    principal = await load_principal(db, identity.user_id, email=identity.email)
    request.state.user_id = principal.user_id
    return principal


async def get_current_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    # Routes over a user's own data have no anonymous form.
    if principal is None:
        raise _auth_error("Missing or invalid bearer token")
    return principal


def get_client_id(request: Request) -> str | None:
    # Browser-local identifier for the anonymous search allowance.
    return normalize_client_id(request.headers.get(get_settings().anonymous_client_header))


def get_entitlements() -> EntitlementService:
    return get_entitlement_service()


def require_capability(capability: Capability):
    # Dependency factory to enforce an entitlement at the route level.
    async def _dependency(
        principal: Principal | None = Depends(get_optional_principal),
        client_id: str | None = Depends(get_client_id),
        db: AsyncSession = Depends(get_db),
    ) -> Principal | None:
        decision = await get_entitlement_service().check(db, principal, capability, client_id=client_id)
        if not decision.allowed:
            raise decision_exception(decision, capability)
        return principal

    return _dependency
