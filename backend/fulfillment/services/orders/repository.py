"""Order repository for database operations.

Wraps the queries the order service needs: loading (and locking) orders,
appending status history, generating order codes and counting pending
reskin requests.
"""

import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.logging import get_logger
from fulfillment.database.models.order import Order, OrderStatusHistory
from fulfillment.database.models.pricing import VehicleType
from fulfillment.database.models.reskin import ReskinRequest, ReskinStatus

logger = get_logger(__name__)


class OrderRepository:
    """Repository for order persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, order_id: uuid.UUID, for_update: bool = False) -> Optional[Order]:
        """
        Get an order by internal id.

        Args:
            order_id: Internal order id
            for_update: Take the order row lock until the transaction ends

        Returns:
            Order if found, None otherwise
        """
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise
        return result.scalar_one_or_none()

    async def add(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def next_order_code(self, on: date) -> str:
        """
        Next human-readable order code for a day, e.g. ``ORD-20250620-007``.

        Codes are unique per database; a concurrent insert of the same code
        fails on the unique constraint and rolls back.
        """
        prefix = f"ORD-{on:%Y%m%d}-"
        result = await self.session.execute(
            select(func.count()).select_from(Order).where(Order.order_id.like(f"{prefix}%"))
        )
        return f"{prefix}{int(result.scalar_one()) + 1:03d}"

    async def add_history(self, entry: OrderStatusHistory) -> OrderStatusHistory:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_history(self, order_id: uuid.UUID) -> Sequence[OrderStatusHistory]:
        result = await self.session.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.timestamp, OrderStatusHistory.id)
        )
        return result.scalars().all()

    async def count_pending_reskins(self, order_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ReskinRequest)
            .where(
                ReskinRequest.order_id == order_id,
                ReskinRequest.status == ReskinStatus.PENDING,
            )
        )
        return int(result.scalar_one())

    async def vehicle_type_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(VehicleType).where(VehicleType.code == code)
        )
        return int(result.scalar_one()) > 0

    async def flush(self) -> None:
        await self.session.flush()
