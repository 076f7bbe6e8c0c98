"""Reskin workflow endpoints."""

from uuid import UUID

from fastapi import APIRouter

from fulfillment.api.deps import CurrentActor, ReskinServiceDep
from fulfillment.schemas.reskins import (
    CancelReskinRequest,
    CompleteReskinRequest,
    ReskinResponse,
)

router = APIRouter(prefix="/reskins", tags=["reskins"])


@router.post(
    "/{reskin_id}/complete",
    response_model=ReskinResponse,
    summary="Complete a reskin and register the new asset",
)
async def complete_reskin(
    reskin_id: UUID,
    request: CompleteReskinRequest,
    actor: CurrentActor,
    reskins: ReskinServiceDep,
) -> ReskinResponse:
    reskin = await reskins.complete_reskin(
        reskin_id,
        actor,
        new_asset_name=request.new_asset_name,
        completion_photos=request.completion_photos,
        notes=request.notes,
    )
    return ReskinResponse.model_validate(reskin)


@router.post(
    "/{reskin_id}/cancel",
    response_model=ReskinResponse,
    summary="Cancel a reskin, optionally cancelling its order",
)
async def cancel_reskin(
    reskin_id: UUID,
    request: CancelReskinRequest,
    actor: CurrentActor,
    reskins: ReskinServiceDep,
) -> ReskinResponse:
    reskin = await reskins.cancel_reskin(
        reskin_id,
        actor,
        reason=request.reason,
        order_action=request.order_action,
    )
    return ReskinResponse.model_validate(reskin)
