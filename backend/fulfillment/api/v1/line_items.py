"""Line item ledger endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import CurrentActor, LineItemLedgerDep
from fulfillment.core.exceptions import ValidationFailed
from fulfillment.schemas.line_items import (
    CatalogLineItemCreate,
    CustomLineItemCreate,
    LineItemOwner,
    LineItemResponse,
    VoidLineItemRequest,
)
from fulfillment.services.line_items.ledger import LineItemTarget

router = APIRouter(prefix="/line-items", tags=["line-items"])


def _target(owner: LineItemOwner) -> LineItemTarget:
    if owner.order_id is not None:
        return LineItemTarget.order(owner.order_id)
    return LineItemTarget.inbound_request(owner.inbound_request_id)


@router.post(
    "/catalog",
    response_model=LineItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a catalog service charge",
)
async def add_catalog_item(
    request: CatalogLineItemCreate,
    actor: CurrentActor,
    ledger: LineItemLedgerDep,
) -> LineItemResponse:
    item = await ledger.add_catalog_item(
        _target(request),
        service_type_id=request.service_type_id,
        quantity=request.quantity,
        actor=actor,
        billing_mode=request.billing_mode,
        metadata=request.metadata,
        notes=request.notes,
    )
    return LineItemResponse.model_validate(item)


@router.post(
    "/custom",
    response_model=LineItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an operator-priced charge",
)
async def add_custom_item(
    request: CustomLineItemCreate,
    actor: CurrentActor,
    ledger: LineItemLedgerDep,
) -> LineItemResponse:
    item = await ledger.add_custom_item(
        _target(request),
        description=request.description,
        category=request.category,
        total=request.total,
        actor=actor,
        billing_mode=request.billing_mode,
        notes=request.notes,
    )
    return LineItemResponse.model_validate(item)


@router.get("", response_model=list[LineItemResponse], summary="List line items")
async def list_items(
    actor: CurrentActor,
    ledger: LineItemLedgerDep,
    order_id: Optional[UUID] = Query(None),
    inbound_request_id: Optional[UUID] = Query(None),
    include_voided: bool = Query(False),
) -> list[LineItemResponse]:
    if (order_id is None) == (inbound_request_id is None):
        raise ValidationFailed(
            "Provide exactly one of order_id or inbound_request_id",
            field="order_id",
        )
    owner = LineItemOwner(order_id=order_id, inbound_request_id=inbound_request_id)
    items = await ledger.list_items(_target(owner), actor, include_voided=include_voided)
    return [LineItemResponse.model_validate(item) for item in items]


@router.post(
    "/{item_id}/void",
    response_model=LineItemResponse,
    summary="Void a line item",
)
async def void_item(
    item_id: UUID,
    request: VoidLineItemRequest,
    actor: CurrentActor,
    ledger: LineItemLedgerDep,
) -> LineItemResponse:
    item = await ledger.void_item(item_id, request.reason, actor)
    return LineItemResponse.model_validate(item)
