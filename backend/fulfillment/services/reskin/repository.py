"""Persistence for reskin requests."""

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.database.models.order import OrderItem
from fulfillment.database.models.reskin import ReskinRequest


class ReskinRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(
        self,
        reskin_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[ReskinRequest]:
        stmt = select(ReskinRequest).where(ReskinRequest.id == reskin_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, reskin: ReskinRequest) -> ReskinRequest:
        self.session.add(reskin)
        await self.session.flush()
        return reskin

    async def get_order_item(self, item_id: uuid.UUID) -> Optional[OrderItem]:
        return await self.session.get(OrderItem, item_id)

    async def list_for_order(self, order_id: uuid.UUID) -> Sequence[ReskinRequest]:
        result = await self.session.execute(
            select(ReskinRequest)
            .where(ReskinRequest.order_id == order_id)
            .order_by(ReskinRequest.created_at)
        )
        return result.scalars().all()

    async def flush(self) -> None:
        await self.session.flush()
