from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_db, require_capability
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import success_response
from slanglab.domain.types import Capability, Principal
from slanglab.services.sources import (
    load_source_rules,
    resolve_min_score,
    select_active_sources,
    update_source_rule,
)


router = APIRouter(prefix="/admin/source-rules", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class SourceRulePatch(BaseModel):
    enabled: bool | None = None
    is_required: bool | None = None
    quality_score: int | None = Field(default=None, ge=0, le=100)
    # Explicit null clears the per-source floor.
    min_score: int | None = Field(default=None, ge=0, le=100)


@router.get("")
async def list_source_rules(
    request: Request,
    _principal: Principal = Depends(require_capability(Capability.ADMIN_FEATURE)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Read straight from the table so admins see edits before the cache refreshes.
    rules = await load_source_rules(db)
    return success_response(
        request=request,
        data={
            "items": [rule.to_dict() for rule in rules],
            "active": [rule.name for rule in select_active_sources(rules)],
            "min_score": resolve_min_score(rules),
        },
    )


@router.patch("/{name}")
async def patch_source_rule(
    name: str,
    payload: SourceRulePatch,
    request: Request,
    _principal: Principal = Depends(require_capability(Capability.ADMIN_FEATURE)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    # Only min_score may be cleared; the other columns are not nullable.
    changes = {key: value for key, value in changes.items() if value is not None or key == "min_score"}
    rule = await update_source_rule(db, name, changes)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "Source rule not found"},
        )
    return success_response(request=request, data=rule.to_dict())
