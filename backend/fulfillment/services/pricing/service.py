"""
Pricing service.

Loads the inputs of the pricing engine for an order (rate card and line
items) and runs it. Reading line items through the caller's session means
a caller holding the order lock prices exactly the items it will commit.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.cache.redis_client import RedisClient
from fulfillment.core.exceptions import NotFound
from fulfillment.core.logging import get_logger, log_performance
from fulfillment.core.security import Actor, ensure_company_access
from fulfillment.database.models.line_item import PurposeType
from fulfillment.database.models.order import Order
from fulfillment.services.line_items.repository import LineItemRepository
from fulfillment.services.orders.repository import OrderRepository
from fulfillment.services.pricing.engine import OrderPricing, compute_pricing
from fulfillment.services.pricing.rate_lookup import RateLookup

logger = get_logger(__name__)


class PricingService:
    def __init__(
        self,
        session: AsyncSession,
        rate_lookup: Optional[RateLookup] = None,
        line_item_repository: Optional[LineItemRepository] = None,
        order_repository: Optional[OrderRepository] = None,
        redis_client: Optional[RedisClient] = None,
    ):
        self.session = session
        self.rate_lookup = rate_lookup or RateLookup(session, redis_client=redis_client)
        self.line_items = line_item_repository or LineItemRepository(session)
        self.orders = order_repository or OrderRepository(session)

    async def compute_for_order(
        self,
        order: Order,
        margin_override: Optional[Decimal] = None,
        override_reason: Optional[str] = None,
        lenient: bool = False,
    ) -> OrderPricing:
        """
        Price an order from the current rate card and its active line items.

        Without an explicit override, a margin override already recorded on
        the order applies.

        Raises:
            NoPricingTierFound: If no tier covers the volume (strict mode)
            NoTransportRateFound: If no transport rate matches (strict mode)
        """
        if margin_override is None and order.margin_override_percent is not None:
            margin_override = order.margin_override_percent
            override_reason = order.margin_override_reason

        with log_performance(logger, "compute_pricing", order_id=str(order.id)):
            rate_card = await self.rate_lookup.rate_card(order.company_id)
            items = await self.line_items.list_for_owner(PurposeType.ORDER, order.id)
            return compute_pricing(
                order,
                items,
                rate_card,
                margin_override=margin_override,
                override_reason=override_reason,
                lenient=lenient,
            )

    async def company_margin_percent(self, order: Order) -> Decimal:
        return await self.rate_lookup.company_margin_percent(order.company_id)

    async def preview_pricing(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        lenient: bool = False,
    ) -> OrderPricing:
        """
        Compute the current price breakdown of an order without persisting it.

        Raises:
            NotFound: If the order does not exist
            Forbidden: If the actor cannot access the order's company
            NoPricingTierFound, NoTransportRateFound: Configuration gaps
                (strict mode only)
        """
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        ensure_company_access(actor, order.company_id)
        return await self.compute_for_order(order, lenient=lenient)
