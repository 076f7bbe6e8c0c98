"""Persistence for service types and line items."""

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.logging import get_logger
from fulfillment.database.models.line_item import LineItem, PurposeType, ServiceType

logger = get_logger(__name__)


class LineItemRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_service_type(self, service_type_id: uuid.UUID) -> Optional[ServiceType]:
        return await self.session.get(ServiceType, service_type_id)

    async def get(self, item_id: uuid.UUID, for_update: bool = False) -> Optional[LineItem]:
        stmt = select(LineItem).where(LineItem.id == item_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, item: LineItem) -> LineItem:
        self.session.add(item)
        await self.session.flush()
        logger.debug(
            "Line item persisted",
            line_item_id=str(item.id),
            line_item_type=item.line_item_type.value,
        )
        return item

    async def list_for_owner(
        self,
        purpose_type: PurposeType,
        owner_id: uuid.UUID,
        include_voided: bool = False,
    ) -> Sequence[LineItem]:
        """
        List line items of an order or inbound request, oldest first.

        Args:
            purpose_type: Kind of owner
            owner_id: Order id or inbound request id
            include_voided: Also return voided items
        """
        owner_column = (
            LineItem.order_id
            if purpose_type == PurposeType.ORDER
            else LineItem.inbound_request_id
        )
        stmt = select(LineItem).where(
            LineItem.purpose_type == purpose_type,
            owner_column == owner_id,
        )
        if not include_voided:
            stmt = stmt.where(LineItem.is_voided.is_(False))
        result = await self.session.execute(stmt.order_by(LineItem.created_at))
        return result.scalars().all()

    async def flush(self) -> None:
        await self.session.flush()
