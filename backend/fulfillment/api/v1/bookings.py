"""Asset booking endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from fulfillment.api.deps import BookingTrackerDep, CurrentActor
from fulfillment.core.security import ensure_role
from fulfillment.schemas.bookings import (
    AvailabilityResponse,
    BookingResponse,
    ReserveAssetRequest,
)
from fulfillment.services.bookings.tracker import compute_blocked_period
from fulfillment.services.orders.enums import STAFF_ROLES

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reserve asset units for an order",
)
async def reserve(
    request: ReserveAssetRequest,
    actor: CurrentActor,
    tracker: BookingTrackerDep,
) -> BookingResponse:
    """
    Reserve units of an asset for an order's event.

    Responds 409 when the asset does not have enough free units in the
    blocked period derived from the event dates, and 422 when the order
    is declined, cancelled or closed or does not contain the asset.
    """
    booking = await tracker.reserve_for_order(
        actor,
        asset_id=request.asset_id,
        order_id=request.order_id,
        quantity=request.quantity,
        event_start=request.event_start,
        event_end=request.event_end,
        refurb_days=request.refurb_days,
    )
    return BookingResponse.model_validate(booking)


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    summary="Free units of an asset for an event",
)
async def check_availability(
    actor: CurrentActor,
    tracker: BookingTrackerDep,
    asset_id: UUID = Query(...),
    event_start: date = Query(...),
    event_end: date = Query(...),
    refurb_days: int = Query(0, ge=0),
) -> AvailabilityResponse:
    ensure_role(actor, STAFF_ROLES, action="check asset availability")
    blocked_from, blocked_until = compute_blocked_period(
        event_start, event_end, refurb_days
    )
    available = await tracker.check_availability(
        asset_id, event_start, event_end, refurb_days
    )
    return AvailabilityResponse(
        asset_id=asset_id,
        event_start=event_start,
        event_end=event_end,
        refurb_days=refurb_days,
        blocked_from=blocked_from,
        blocked_until=blocked_until,
        available_quantity=available,
    )
