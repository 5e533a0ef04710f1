from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_db, require_capability
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import success_response
from slanglab.domain.models import MonitoringRecord, Term
from slanglab.domain.types import Capability, Principal
from slanglab.services.monitoring import monitoring_record_dict, upsert_monitoring_record
from slanglab.services.sightings import load_sightings
from slanglab.services.sources import current_min_score
from slanglab.services.terms import get_or_create_term
from slanglab.services.trends import compute_trend_summary


router = APIRouter(prefix="/tracking", tags=["tracking"], responses=DEFAULT_ERROR_RESPONSES)


class TrackRequest(BaseModel):
    phrase: str = Field(min_length=1, max_length=200)


@router.post("", status_code=status.HTTP_201_CREATED)
async def track_phrase(
    payload: TrackRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.TRACKING)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Re-tracking the same phrase returns the existing record.
    term = await get_or_create_term(db, principal.user_id, payload.phrase)
    record = await upsert_monitoring_record(db, term_id=term.id, owner_id=principal.user_id)
    await db.commit()
    return success_response(request=request, data=monitoring_record_dict(record, term))


@router.get("")
async def list_tracked(
    request: Request,
    principal: Principal = Depends(require_capability(Capability.TRACKING)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await db.execute(
        select(MonitoringRecord, Term)
        .join(Term, Term.id == MonitoringRecord.term_id)
        .where(MonitoringRecord.owner_id == principal.user_id)
        .order_by(MonitoringRecord.monitoring_started_at.desc(), MonitoringRecord.id.desc())
    )
    items = [monitoring_record_dict(record, term) for record, term in result.all()]
    return success_response(request=request, data={"items": items})


@router.get("/{term_id}/summary")
async def tracking_summary(
    term_id: int,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.TRACKING)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = (
        await db.execute(
            select(MonitoringRecord, Term)
            .join(Term, Term.id == MonitoringRecord.term_id)
            .where(MonitoringRecord.term_id == term_id, MonitoringRecord.owner_id == principal.user_id)
        )
    ).first()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "Tracked term not found"},
        )
    record, term = row
    sightings = await load_sightings(db, term.id)
    summary = compute_trend_summary(sightings, min_score=await current_min_score())
    return success_response(
        request=request,
        data={"record": monitoring_record_dict(record, term), "summary": summary.to_dict()},
    )
