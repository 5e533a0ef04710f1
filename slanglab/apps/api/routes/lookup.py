from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_client_id, get_db, get_entitlements, get_optional_principal
from slanglab.apps.api.errors import decision_exception
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import access_meta, success_response
from slanglab.domain.types import Capability, Principal, SightingCandidate
from slanglab.providers.evidence.factory import get_evidence_provider
from slanglab.services.entitlements import EntitlementService
from slanglab.services.gated_actions import run_gated_action
from slanglab.services.history import record_lookup
from slanglab.services.sightings import parse_sightings
from slanglab.services.sources import current_min_score
from slanglab.services.terms import validate_phrase


router = APIRouter(tags=["lookup"], responses=DEFAULT_ERROR_RESPONSES)


class LookupRequest(BaseModel):
    term: str = Field(min_length=1, max_length=200)


@router.post("/lookup")
async def lookup(
    payload: LookupRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    phrase = validate_phrase(payload.term)
    provider = get_evidence_provider()
    min_score = await current_min_score()

    async def _search(tx: AsyncSession) -> tuple[list[SightingCandidate], int]:
        # A provider failure propagates and rolls back, so the search is neither counted nor kept.
        parsed = parse_sightings(await provider.search(phrase))
        kept = [sighting for sighting in parsed.accepted if sighting.score >= min_score]
        if principal is not None:
            record_lookup(tx, principal.user_id, phrase, sighting_count=len(kept))
        return kept, parsed.rejected + len(parsed.accepted) - len(kept)

    result = await run_gated_action(
        db, principal, Capability.SEARCH, _search, client_id=client_id, service=service
    )
    if not result.executed:
        raise decision_exception(result.decision, Capability.SEARCH)
    sightings, rejected = result.value
    remaining = result.decision.remaining
    if remaining is not None and remaining > 0:
        # The decision was taken before this search was counted.
        remaining -= 1
    return success_response(
        request=request,
        data={
            "term": phrase,
            "min_score": min_score,
            "sightings": [sighting.model_dump(mode="json") for sighting in sightings],
            "rejected": rejected,
            "remaining": "unlimited" if remaining is None else remaining,
        },
        access=access_meta(Capability.SEARCH, result.decision, remaining),
    )
