"""
Persistence for assets and asset bookings.

Availability checks lock the asset row with ``SELECT ... FOR UPDATE`` so
that the overlap check and the insert of a new booking are serialized
per asset across every service instance.
"""

import uuid
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.logging import get_logger
from fulfillment.database.models.asset import Asset, AssetBooking

logger = get_logger(__name__)


class BookingRepository:
    """Repository for asset and booking rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_asset(
        self,
        asset_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Asset]:
        """
        Load an asset, optionally taking its row lock.

        The lock is held until the surrounding transaction ends.
        """
        stmt = select(Asset).where(Asset.id == asset_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_asset(self, asset: Asset) -> Asset:
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def sum_overlapping(
        self,
        asset_id: uuid.UUID,
        blocked_from: date,
        blocked_until: date,
        exclude_order_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Sum quantities of active bookings overlapping ``[from, until)``.

        Args:
            asset_id: Asset to check
            blocked_from: Inclusive start of the period
            blocked_until: Exclusive end of the period
            exclude_order_id: Ignore bookings of this order

        Returns:
            Total booked quantity
        """
        stmt = select(func.coalesce(func.sum(AssetBooking.quantity), 0)).where(
            AssetBooking.asset_id == asset_id,
            AssetBooking.released_at.is_(None),
            AssetBooking.blocked_from < blocked_until,
            AssetBooking.blocked_until > blocked_from,
        )
        if exclude_order_id is not None:
            stmt = stmt.where(AssetBooking.order_id != exclude_order_id)

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to sum overlapping bookings",
                asset_id=str(asset_id),
                error=str(e),
            )
            raise
        return int(result.scalar_one())

    async def add_booking(self, booking: AssetBooking) -> AssetBooking:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def list_active_for_order(self, order_id: uuid.UUID) -> Sequence[AssetBooking]:
        result = await self.session.execute(
            select(AssetBooking)
            .where(
                AssetBooking.order_id == order_id,
                AssetBooking.released_at.is_(None),
            )
            .order_by(AssetBooking.created_at)
        )
        return result.scalars().all()

    async def release(
        self,
        bookings: Sequence[AssetBooking],
        reason: str,
        released_at: datetime,
    ) -> None:
        for booking in bookings:
            booking.released_at = released_at
            booking.release_reason = reason
        await self.session.flush()
