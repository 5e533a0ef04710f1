from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_current_principal, get_db
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import success_response
from slanglab.domain.types import Principal
from slanglab.services.history import list_lookups


router = APIRouter(tags=["history"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/history")
async def lookup_history(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    search: str | None = Query(default=None, max_length=200),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Limits above history_max_limit are clamped rather than rejected.
    history = await list_lookups(db, principal.user_id, page=page, limit=limit, search=search)
    return success_response(request=request, data=history.to_dict())
