from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from slanglab.apps.api.deps import require_capability
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import success_response
from slanglab.domain.types import Capability, Principal
from slanglab.services.monitoring import run_monitoring_pass
from slanglab.services.telemetry import counters_snapshot, external_call_stats


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class MonitoringRunRequest(BaseModel):
    # Omit record_ids to run the scheduler's due batch.
    record_ids: list[int] | None = Field(default=None, max_length=500)
    force: bool = False


@router.post("/monitoring/run")
async def run_monitoring(
    request: Request,
    payload: MonitoringRunRequest | None = None,
    _principal: Principal = Depends(require_capability(Capability.ADMIN_FEATURE)),
) -> dict:
    payload = payload or MonitoringRunRequest()
    result = await run_monitoring_pass(payload.record_ids, force=payload.force)
    return success_response(request=request, data=result.to_dict())


@router.get("/metrics")
async def ops_metrics(
    request: Request,
    window_s: int = 300,
    _principal: Principal = Depends(require_capability(Capability.ADMIN_FEATURE)),
) -> dict:
    return success_response(
        request=request,
        data={
            "window_s": window_s,
            "counters": counters_snapshot(),
            "external_calls": external_call_stats(window_s),
        },
    )
