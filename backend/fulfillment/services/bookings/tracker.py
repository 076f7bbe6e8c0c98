"""
Asset booking availability tracker.

Reserving an asset blocks it from ``event_start - (5 + refurb_days)``
days up to ``event_end + 3`` days (exclusive), covering preparation,
refurbishment and return handling. A reservation is accepted only if
the active bookings overlapping that period leave enough units.
"""

import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    InsufficientAvailability,
    InvalidWindow,
    NotFound,
    ValidationFailed,
)
from fulfillment.core.logging import get_logger, log_performance
from fulfillment.core.security import Actor, ensure_company_access, ensure_role
from fulfillment.database.models.asset import Asset, AssetBooking
from fulfillment.database.models.order import Order
from fulfillment.services.bookings.repository import BookingRepository
from fulfillment.services.orders.enums import STAFF_ROLES
from fulfillment.services.orders.repository import OrderRepository

logger = get_logger(__name__)

PREP_BUFFER_DAYS = 5
RETURN_BUFFER_DAYS = 3


def compute_blocked_period(
    event_start: date,
    event_end: date,
    refurb_days: int = 0,
) -> tuple[date, date]:
    """
    Derive the blocked period of a reservation.

    Args:
        event_start: First day of the event
        event_end: Last day of the event
        refurb_days: Extra preparation days for refurbishment

    Returns:
        (blocked_from, blocked_until) with blocked_until exclusive

    Raises:
        InvalidWindow: If the event window is zero-length or inverted
        ValidationFailed: If refurb_days is negative
    """
    if event_end <= event_start:
        raise InvalidWindow(
            "Event end date must be after the event start date",
            event_start=event_start,
            event_end=event_end,
        )
    if refurb_days < 0:
        raise ValidationFailed(
            "Refurbishment days cannot be negative",
            field="refurb_days",
        )
    blocked_from = event_start - timedelta(days=PREP_BUFFER_DAYS + refurb_days)
    blocked_until = event_end + timedelta(days=RETURN_BUFFER_DAYS)
    return blocked_from, blocked_until


class BookingTracker:
    """
    Accepts or rejects asset reservations against existing bookings.

    Methods taking ``commit`` flush only when it is False so that callers
    such as the order service can include the booking in a larger unit
    of work.
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[BookingRepository] = None,
        order_repository: Optional[OrderRepository] = None,
    ):
        self.session = session
        self.repository = repository or BookingRepository(session)
        self.orders = order_repository or OrderRepository(session)

    async def _locked_asset(self, asset_id: uuid.UUID) -> Asset:
        asset = await self.repository.get_asset(asset_id, for_update=True)
        if asset is None:
            raise NotFound("Asset", asset_id)
        return asset

    async def reserve(
        self,
        asset_id: uuid.UUID,
        order_id: uuid.UUID,
        quantity: int,
        event_start: date,
        event_end: date,
        refurb_days: int = 0,
        commit: bool = True,
    ) -> AssetBooking:
        """
        Reserve units of an asset for an order.

        The asset row stays locked from the availability check until the
        transaction ends, so concurrent reservations of the same asset
        are checked one after the other.

        Raises:
            InvalidWindow: If the event window is zero-length or inverted
            ValidationFailed: If quantity is not positive
            NotFound: If the asset does not exist
            InsufficientAvailability: If too few units are free
        """
        blocked_from, blocked_until = compute_blocked_period(
            event_start, event_end, refurb_days
        )
        if quantity <= 0:
            raise ValidationFailed("Quantity must be at least 1", field="quantity")

        with log_performance(
            logger, "reserve_booking", asset_id=str(asset_id), order_id=str(order_id)
        ):
            asset = await self._locked_asset(asset_id)
            booked = await self.repository.sum_overlapping(
                asset_id, blocked_from, blocked_until
            )
            available = asset.total_quantity - booked
            if quantity > available:
                logger.info(
                    "Reservation rejected",
                    asset_id=str(asset_id),
                    order_id=str(order_id),
                    requested=quantity,
                    available=available,
                )
                raise InsufficientAvailability(
                    asset_id,
                    requested=quantity,
                    available=available,
                    blocked_from=blocked_from,
                    blocked_until=blocked_until,
                )

            booking = await self.repository.add_booking(
                AssetBooking(
                    asset_id=asset_id,
                    order_id=order_id,
                    quantity=quantity,
                    blocked_from=blocked_from,
                    blocked_until=blocked_until,
                )
            )

        if commit:
            await self.session.commit()

        logger.info(
            "Asset reserved",
            asset_id=str(asset_id),
            order_id=str(order_id),
            quantity=quantity,
            blocked_from=blocked_from.isoformat(),
            blocked_until=blocked_until.isoformat(),
        )
        return booking

    async def reserve_for_order(
        self,
        actor: Actor,
        asset_id: uuid.UUID,
        order_id: uuid.UUID,
        quantity: int,
        event_start: date,
        event_end: date,
        refurb_days: int = 0,
    ) -> AssetBooking:
        """
        Reserve an asset of an order on behalf of staff.

        The order row is locked for the whole reservation so that it
        cannot be cancelled, and its bookings released, while the new
        booking is being written.

        Raises:
            Forbidden: If the actor is not staff or lacks company access
            NotFound: If the order or asset does not exist
            ValidationFailed: If the order is terminal, or the asset belongs
                to another company or is not one of the order's items
        """
        ensure_role(actor, STAFF_ROLES, action="reserve assets")
        try:
            order = await self.orders.get(order_id, for_update=True)
            if order is None:
                raise NotFound("Order", order_id)
            ensure_company_access(actor, order.company_id)
            if order.status.is_terminal:
                raise ValidationFailed(
                    f"Cannot reserve assets for a {order.status.value} order",
                    field="order_id",
                    order_id=order.order_id,
                    status=order.status.value,
                )

            asset = await self.repository.get_asset(asset_id)
            if asset is None:
                raise NotFound("Asset", asset_id)
            if asset.company_id != order.company_id:
                raise ValidationFailed(
                    "Asset belongs to a different company than the order",
                    field="asset_id",
                    asset_id=asset_id,
                    order_id=order.order_id,
                )
            if asset_id not in {item.asset_id for item in order.items}:
                raise ValidationFailed(
                    "Asset is not an item of the order",
                    field="asset_id",
                    asset_id=asset_id,
                    order_id=order.order_id,
                )

            return await self.reserve(
                asset_id=asset_id,
                order_id=order_id,
                quantity=quantity,
                event_start=event_start,
                event_end=event_end,
                refurb_days=refurb_days,
            )
        except Exception:
            await self.session.rollback()
            raise

    async def check_availability(
        self,
        asset_id: uuid.UUID,
        event_start: date,
        event_end: date,
        refurb_days: int = 0,
    ) -> int:
        """
        Units of the asset free for the derived blocked period.

        This read does not lock; the answer may be stale by the time a
        reservation is attempted.
        """
        blocked_from, blocked_until = compute_blocked_period(
            event_start, event_end, refurb_days
        )
        asset = await self.repository.get_asset(asset_id)
        if asset is None:
            raise NotFound("Asset", asset_id)
        booked = await self.repository.sum_overlapping(
            asset_id, blocked_from, blocked_until
        )
        return max(asset.total_quantity - booked, 0)

    async def materialize_order_bookings(self, order: Order) -> list[AssetBooking]:
        """
        Reserve every item of an order for its event dates.

        Units already held by active bookings of the order (for example a
        staff reservation made before confirmation) count towards the
        items of the same asset; only the shortfall is reserved. Items are
        reserved in asset id order so that concurrent orders lock assets
        in the same sequence.
        """
        if order.event_start_date is None or order.event_end_date is None:
            raise InvalidWindow(
                "Event dates are required to reserve assets",
                order_id=order.order_id,
            )

        held: dict[uuid.UUID, int] = defaultdict(int)
        for booking in await self.repository.list_active_for_order(order.id):
            held[booking.asset_id] += booking.quantity

        bookings = []
        for item in sorted(order.items, key=lambda i: str(i.asset_id)):
            covered = min(held[item.asset_id], item.quantity)
            held[item.asset_id] -= covered
            shortfall = item.quantity - covered
            if shortfall <= 0:
                continue
            bookings.append(
                await self.reserve(
                    asset_id=item.asset_id,
                    order_id=order.id,
                    quantity=shortfall,
                    event_start=order.event_start_date,
                    event_end=order.event_end_date,
                    refurb_days=item.refurb_days or 0,
                    commit=False,
                )
            )
        return bookings

    async def release_order_bookings(
        self,
        order_id: uuid.UUID,
        reason: str,
        commit: bool = True,
    ) -> Sequence[AssetBooking]:
        """
        Release every active booking of an order.

        Returns:
            The bookings that were released
        """
        bookings = await self.repository.list_active_for_order(order_id)
        if bookings:
            await self.repository.release(
                bookings, reason=reason, released_at=datetime.now(timezone.utc)
            )
            logger.info(
                "Order bookings released",
                order_id=str(order_id),
                count=len(bookings),
                reason=reason,
            )
        if commit:
            await self.session.commit()
        return bookings
