from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_client_id, get_db, get_entitlements, get_optional_principal
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import success_response
from slanglab.domain.types import Principal
from slanglab.services.anonymous_quota import anonymous_search_limit, read_anonymous_searches
from slanglab.services.entitlements import EntitlementService, parse_capability
from slanglab.services.usage import anonymous_usage_stats, usage_stats


router = APIRouter(tags=["access"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/access/{capability}")
async def get_access(
    capability: str,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    # Report the decision without executing anything; a denial is still a 200 here.
    parsed = parse_capability(capability)
    decision = await service.check(db, principal, parsed, client_id=client_id)
    return success_response(request=request, data={"capability": parsed.value, **decision.to_dict()})


@router.get("/usage")
async def get_usage(
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    if principal is None:
        used = await read_anonymous_searches(db, client_id) if client_id else 0
        stats = anonymous_usage_stats(used, anonymous_search_limit())
    else:
        stats = await usage_stats(db, principal, limits_table=service.limits_table, now=service.now())
    return success_response(request=request, data=stats.to_dict())


@router.get("/plans")
async def list_plans(
    request: Request,
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    # -1 is passed through as the unlimited sentinel.
    plans: dict[str, Any] = {plan.value: limits.to_dict() for plan, limits in service.limits_table.items()}
    return success_response(
        request=request,
        data={"plans": plans, "anonymous_search_limit": anonymous_search_limit()},
    )
