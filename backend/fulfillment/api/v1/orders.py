"""
Order lifecycle API endpoints.

Creation, status transitions, cancellation, return to logistics, status
history, pricing preview, quote approval and the operator field updates.
Domain errors propagate to the application's ``FulfillmentError``
handler, which renders them with their HTTP status.
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import CurrentActor, OrderServiceDep, PricingServiceDep, ReskinServiceDep
from fulfillment.core.logging import get_logger
from fulfillment.schemas.orders import (
    CancelOrderRequest,
    JobNumberUpdate,
    OrderCreateRequest,
    OrderResponse,
    ReturnToLogisticsRequest,
    StatusHistoryResponse,
    TimeWindowsUpdate,
    TransitionRequest,
    TripTypeUpdate,
    VehicleUpdate,
)
from fulfillment.schemas.pricing import ApproveQuoteRequest, OrderPricingResponse
from fulfillment.schemas.line_items import LineItemResponse
from fulfillment.schemas.reskins import (
    ProcessedReskinResponse,
    ProcessReskinRequest,
    ReskinResponse,
)
from fulfillment.services.orders.service import NewOrderItem

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft order",
)
async def create_order(
    request: OrderCreateRequest,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    fields = request.model_dump(exclude={"company_id", "items"})
    order = await orders.create_order(
        actor,
        request.company_id,
        [
            NewOrderItem(
                asset_id=item.asset_id,
                quantity=item.quantity,
                refurb_days=item.refurb_days,
            )
            for item in request.items
        ],
        **fields,
    )
    return OrderResponse.model_validate(order)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
async def get_order(
    order_id: UUID,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    return OrderResponse.model_validate(await orders.get_order(order_id, actor))


@router.post(
    "/{order_id}/transitions",
    response_model=StatusHistoryResponse,
    summary="Move an order to another status",
)
async def submit_transition(
    order_id: UUID,
    request: TransitionRequest,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> StatusHistoryResponse:
    """
    Request a status transition.

    Returns the recorded history entry. Responds 409 when the target is
    not reachable from the current status or a precondition is unmet,
    and 403 when the caller's role may not perform the edge.
    """
    logger.info(
        "Transition requested",
        order_id=str(order_id),
        requested_status=request.requested_status.value,
    )
    entry = await orders.submit_transition(
        order_id, request.requested_status, actor, notes=request.notes
    )
    return StatusHistoryResponse.model_validate(entry)


@router.post(
    "/{order_id}/cancel",
    response_model=StatusHistoryResponse,
    summary="Cancel an order",
)
async def cancel_order(
    order_id: UUID,
    request: CancelOrderRequest,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> StatusHistoryResponse:
    entry = await orders.cancel_order(
        order_id, actor, reason=request.reason.value, notes=request.notes
    )
    return StatusHistoryResponse.model_validate(entry)


@router.post(
    "/{order_id}/return-to-logistics",
    response_model=StatusHistoryResponse,
    summary="Send an order awaiting approval back to pricing review",
)
async def return_to_logistics(
    order_id: UUID,
    request: ReturnToLogisticsRequest,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> StatusHistoryResponse:
    entry = await orders.return_to_logistics(order_id, actor, reason=request.reason)
    return StatusHistoryResponse.model_validate(entry)


@router.get(
    "/{order_id}/history",
    response_model=list[StatusHistoryResponse],
    summary="Status history, oldest first",
)
async def get_status_history(
    order_id: UUID,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> list[StatusHistoryResponse]:
    history = await orders.get_status_history(order_id, actor)
    return [StatusHistoryResponse.model_validate(entry) for entry in history]


@router.get(
    "/{order_id}/pricing",
    response_model=OrderPricingResponse,
    summary="Preview the price breakdown",
)
async def preview_pricing(
    order_id: UUID,
    actor: CurrentActor,
    pricing: PricingServiceDep,
    lenient: bool = Query(
        False,
        description="Report missing rate configuration instead of failing",
    ),
) -> OrderPricingResponse:
    result = await pricing.preview_pricing(order_id, actor, lenient=lenient)
    return OrderPricingResponse.from_pricing(result)


@router.post(
    "/{order_id}/approve-quote",
    response_model=OrderPricingResponse,
    summary="Approve the quote and move the order to QUOTED",
)
async def approve_quote(
    order_id: UUID,
    request: ApproveQuoteRequest,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderPricingResponse:
    result = await orders.approve_quote(
        order_id,
        actor,
        margin_override=request.margin_override_percent,
        override_reason=request.margin_override_reason,
    )
    return OrderPricingResponse.from_pricing(result)


@router.patch("/{order_id}/job-number", response_model=OrderResponse)
async def update_job_number(
    order_id: UUID,
    request: JobNumberUpdate,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    order = await orders.update_job_number(order_id, actor, request.job_number)
    return OrderResponse.model_validate(order)


@router.patch("/{order_id}/time-windows", response_model=OrderResponse)
async def update_time_windows(
    order_id: UUID,
    request: TimeWindowsUpdate,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    order = await orders.update_time_windows(
        order_id,
        actor,
        delivery_window_start=request.delivery_window_start,
        delivery_window_end=request.delivery_window_end,
        pickup_window_start=request.pickup_window_start,
        pickup_window_end=request.pickup_window_end,
    )
    return OrderResponse.model_validate(order)


@router.patch("/{order_id}/vehicle", response_model=OrderResponse)
async def update_vehicle(
    order_id: UUID,
    request: VehicleUpdate,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    order = await orders.update_vehicle(
        order_id, actor, vehicle_type=request.vehicle_type, reason=request.reason
    )
    return OrderResponse.model_validate(order)


@router.patch("/{order_id}/trip-type", response_model=OrderResponse)
async def update_trip_type(
    order_id: UUID,
    request: TripTypeUpdate,
    actor: CurrentActor,
    orders: OrderServiceDep,
) -> OrderResponse:
    order = await orders.update_trip_type(order_id, actor, request.trip_type)
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/reskins",
    response_model=list[ReskinResponse],
    summary="Reskin requests of an order",
)
async def list_reskins(
    order_id: UUID,
    actor: CurrentActor,
    reskins: ReskinServiceDep,
) -> list[ReskinResponse]:
    requests = await reskins.list_for_order(order_id, actor)
    return [ReskinResponse.model_validate(r) for r in requests]


@router.post(
    "/{order_id}/items/{order_item_id}/reskin",
    response_model=ProcessedReskinResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a reskin request for an order item and charge its cost",
)
async def process_reskin(
    order_id: UUID,
    order_item_id: UUID,
    request: ProcessReskinRequest,
    actor: CurrentActor,
    reskins: ReskinServiceDep,
) -> ProcessedReskinResponse:
    reskin, line_item = await reskins.process_reskin(
        order_id,
        order_item_id,
        actor,
        target_brand=request.target_brand,
        cost=request.cost,
        client_notes=request.client_notes,
        admin_notes=request.admin_notes,
    )
    return ProcessedReskinResponse(
        reskin=ReskinResponse.model_validate(reskin),
        line_item=LineItemResponse.model_validate(line_item),
    )
