from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.apps.api.deps import get_client_id, get_db, get_entitlements, get_optional_principal
from slanglab.apps.api.errors import decision_exception
from slanglab.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slanglab.apps.api.response import access_meta, success_response
from slanglab.domain.models import Creation
from slanglab.domain.types import Capability, Platform, Principal
from slanglab.providers.generator.base import SlangGenerator
from slanglab.providers.generator.factory import get_slang_generator
from slanglab.services.entitlements import EntitlementService
from slanglab.services.gated_actions import GatedActionResult, run_gated_action
from slanglab.services.terms import MAX_TEXT_LENGTH, validate_creation


router = APIRouter(tags=["creations"], responses=DEFAULT_ERROR_RESPONSES)


class CreationRequest(BaseModel):
    phrase: str = Field(min_length=1)
    meaning: str = Field(min_length=1)
    example: str = Field(min_length=1)


class GenerateRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH)


class ShareRequest(BaseModel):
    creation_id: int
    platform: Platform


def _creation_dict(creation: Creation) -> dict[str, Any]:
    return {
        "id": creation.id,
        "phrase": creation.phrase,
        "meaning": creation.meaning,
        "example": creation.example,
        "creation_type": creation.creation_type,
        "created_at": creation.created_at.isoformat() if creation.created_at else None,
    }


async def _insert_creation(
    session: AsyncSession,
    *,
    user_id: str,
    phrase: str,
    meaning: str,
    example: str,
    creation_type: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    creation = Creation(
        user_id=user_id,
        phrase=phrase,
        meaning=meaning,
        example=example,
        creation_type=creation_type,
        metadata_json=metadata,
    )
    session.add(creation)
    await session.flush()
    await session.refresh(creation)
    return _creation_dict(creation)


def _remaining_after(result: GatedActionResult) -> int | None:
    # The decision was taken before this action was counted.
    remaining = result.decision.remaining
    return remaining - 1 if remaining else remaining


def _respond(request: Request, result: GatedActionResult, capability: Capability) -> dict:
    if not result.executed:
        raise decision_exception(result.decision, capability)
    return success_response(
        request=request,
        data={"creation": result.value},
        access=access_meta(capability, result.decision, _remaining_after(result)),
    )


@router.post("/creations", status_code=status.HTTP_201_CREATED)
async def create_manual(
    payload: CreationRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    phrase, meaning, example = validate_creation(payload.phrase, payload.meaning, payload.example)

    async def _create(session: AsyncSession) -> dict[str, Any]:
        return await _insert_creation(
            session,
            user_id=principal.user_id,
            phrase=phrase,
            meaning=meaning,
            example=example,
            creation_type="manual",
        )

    result = await run_gated_action(
        db, principal, Capability.MANUAL_CREATION, _create, client_id=client_id, service=service
    )
    return _respond(request, result, Capability.MANUAL_CREATION)


@router.post("/creations/generate", status_code=status.HTTP_201_CREATED)
async def create_generated(
    payload: GenerateRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    generator: SlangGenerator = get_slang_generator()

    async def _generate(session: AsyncSession) -> dict[str, Any]:
        generated = await generator.generate(payload.prompt, age_band=principal.age_band)
        phrase, meaning, example = validate_creation(generated.phrase, generated.meaning, generated.example)
        return await _insert_creation(
            session,
            user_id=principal.user_id,
            phrase=phrase,
            meaning=meaning,
            example=example,
            creation_type="ai",
            metadata={"prompt": payload.prompt},
        )

    result = await run_gated_action(
        db, principal, Capability.AI_CREATION, _generate, client_id=client_id, service=service
    )
    return _respond(request, result, Capability.AI_CREATION)


@router.post("/share")
async def share_creation(
    payload: ShareRequest,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    client_id: str | None = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
    service: EntitlementService = Depends(get_entitlements),
) -> dict:
    async def _share(session: AsyncSession) -> dict[str, Any]:
        creation = await session.get(Creation, payload.creation_id)
        if creation is None or creation.user_id != principal.user_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "NOT_FOUND", "message": "Creation not found"},
            )
        return {
            "creation_id": creation.id,
            "platform": payload.platform.value,
            "text": f"{creation.phrase}: {creation.meaning}\n\"{creation.example}\"",
        }

    result = await run_gated_action(
        db, principal, Capability.SHARE, _share, client_id=client_id, service=service
    )
    if not result.executed:
        raise decision_exception(result.decision, Capability.SHARE)
    return success_response(
        request=request,
        data=result.value,
        access=access_meta(Capability.SHARE, result.decision, _remaining_after(result)),
    )
