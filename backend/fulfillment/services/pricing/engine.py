"""
Order pricing engine.

Composes the base operations cost (volume tier), the transport rate,
catalog and custom line items and the company margin into an
``OrderPricing`` breakdown:

    logistics_sub_total = base_operations.total + transport.final_rate
                          + catalog_total
    client_total = logistics_sub_total * (1 + margin_percent / 100)
                   + custom_total

``compute_pricing`` is a pure function of its inputs; amounts are kept
as unrounded ``Decimal`` values and rounded only when serialized.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

from fulfillment.core.exceptions import NoPricingTierFound, NoTransportRateFound
from fulfillment.core.logging import get_logger
from fulfillment.database.models.line_item import BillingMode, LineItem, LineItemType
from fulfillment.database.models.order import Order
from fulfillment.services.pricing.rate_lookup import (
    RateCard,
    select_tier,
    select_transport_rate,
)

logger = get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class BaseOperations:
    volume: Decimal
    rate: Decimal
    total: Decimal


@dataclass(frozen=True)
class TransportCost:
    emirate: Optional[str]
    city: Optional[str]
    trip_type: str
    vehicle_type: str
    final_rate: Decimal
    vehicle_changed: bool = False
    vehicle_change_reason: Optional[str] = None


@dataclass(frozen=True)
class LineItemTotals:
    catalog_total: Decimal = ZERO
    custom_total: Decimal = ZERO


@dataclass(frozen=True)
class Margin:
    percent: Decimal
    amount: Optional[Decimal]
    overridden: bool = False
    override_reason: Optional[str] = None


@dataclass(frozen=True)
class OrderPricing:
    """
    Full price breakdown of an order.

    In lenient mode a missing tier or transport rate leaves the affected
    section and both totals as None and records the gap in
    ``configuration_gaps`` instead of raising.
    """

    base_operations: Optional[BaseOperations]
    transport: Optional[TransportCost]
    line_items: LineItemTotals
    margin: Margin
    logistics_sub_total: Optional[Decimal]
    client_total: Optional[Decimal]
    configuration_gaps: list[str] = field(default_factory=list)
    calculated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_complete(self) -> bool:
        return not self.configuration_gaps and self.client_total is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with amounts rounded to 2 decimal places."""
        return {
            "base_operations": (
                {
                    "volume": str(self.base_operations.volume),
                    "rate": _money(self.base_operations.rate),
                    "total": _money(self.base_operations.total),
                }
                if self.base_operations
                else None
            ),
            "transport": (
                {
                    "emirate": self.transport.emirate,
                    "city": self.transport.city,
                    "trip_type": self.transport.trip_type,
                    "vehicle_type": self.transport.vehicle_type,
                    "final_rate": _money(self.transport.final_rate),
                    "vehicle_changed": self.transport.vehicle_changed,
                    "vehicle_change_reason": self.transport.vehicle_change_reason,
                }
                if self.transport
                else None
            ),
            "line_items": {
                "catalog_total": _money(self.line_items.catalog_total),
                "custom_total": _money(self.line_items.custom_total),
            },
            "margin": {
                "percent": str(self.margin.percent),
                "amount": _money(self.margin.amount),
                "overridden": self.margin.overridden,
                "override_reason": self.margin.override_reason,
            },
            "logistics_sub_total": _money(self.logistics_sub_total),
            "client_total": _money(self.client_total),
            "configuration_gaps": list(self.configuration_gaps),
            "calculated_at": self.calculated_at.isoformat(),
        }


def _money(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def sum_line_items(line_items: Iterable[LineItem]) -> LineItemTotals:
    """
    Sum active billable line items by type.

    Voided items and NON_BILLABLE/COMPLIMENTARY items contribute nothing.
    """
    catalog_total = ZERO
    custom_total = ZERO
    for item in line_items:
        if item.is_voided or item.billing_mode != BillingMode.BILLABLE:
            continue
        if item.line_item_type == LineItemType.CATALOG:
            catalog_total += Decimal(item.total)
        else:
            custom_total += Decimal(item.total)
    return LineItemTotals(catalog_total=catalog_total, custom_total=custom_total)


def resolve_margin(
    default_percent: Decimal,
    override_percent: Optional[Decimal] = None,
    override_reason: Optional[str] = None,
) -> tuple[Decimal, bool, Optional[str]]:
    """
    Pick the margin percent to apply.

    The override applies only when it carries a non-empty reason and
    differs from the company default.

    Returns:
        (percent, overridden, override_reason)
    """
    reason = (override_reason or "").strip()
    if (
        override_percent is not None
        and reason
        and Decimal(override_percent) != Decimal(default_percent)
    ):
        return Decimal(override_percent), True, reason
    return Decimal(default_percent), False, None


def compute_pricing(
    order: Order,
    line_items: Iterable[LineItem],
    rate_card: RateCard,
    margin_override: Optional[Decimal] = None,
    override_reason: Optional[str] = None,
    lenient: bool = False,
) -> OrderPricing:
    """
    Compute the price breakdown of an order.

    Args:
        order: Order supplying volume, destination, trip and vehicle
        line_items: Line items of the order (voided items are ignored)
        rate_card: Rate configuration snapshot
        margin_override: Optional margin percent replacing the default
        override_reason: Justification for the override
        lenient: Record configuration gaps instead of raising

    Returns:
        OrderPricing breakdown

    Raises:
        NoPricingTierFound: If no tier covers the volume (strict mode)
        NoTransportRateFound: If no transport rate matches (strict mode)
    """
    gaps: list[str] = []
    volume = Decimal(order.calculated_volume or ZERO)

    base_operations: Optional[BaseOperations] = None
    try:
        tier = select_tier(rate_card.tiers, volume)
        base_operations = BaseOperations(
            volume=volume,
            rate=tier.base_rate,
            total=volume * tier.base_rate,
        )
    except NoPricingTierFound as e:
        if not lenient:
            raise
        gaps.append(e.message)

    transport: Optional[TransportCost] = None
    try:
        rate = select_transport_rate(
            rate_card.transport_rates,
            order.venue_emirate,
            order.venue_city,
            order.transport_trip_type,
            order.transport_vehicle_type,
        )
        transport = TransportCost(
            emirate=order.venue_emirate,
            city=order.venue_city,
            trip_type=order.transport_trip_type.value,
            vehicle_type=order.transport_vehicle_type,
            final_rate=rate.rate,
            vehicle_changed=bool(order.vehicle_changed),
            vehicle_change_reason=order.vehicle_change_reason,
        )
    except NoTransportRateFound as e:
        if not lenient:
            raise
        gaps.append(e.message)

    totals = sum_line_items(line_items)
    percent, overridden, reason = resolve_margin(
        rate_card.margin_percent, margin_override, override_reason
    )

    logistics_sub_total: Optional[Decimal] = None
    margin_amount: Optional[Decimal] = None
    client_total: Optional[Decimal] = None
    if base_operations is not None and transport is not None:
        logistics_sub_total = (
            base_operations.total + transport.final_rate + totals.catalog_total
        )
        margin_amount = logistics_sub_total * percent / HUNDRED
        client_total = (
            logistics_sub_total * (1 + percent / HUNDRED) + totals.custom_total
        )

    pricing = OrderPricing(
        base_operations=base_operations,
        transport=transport,
        line_items=totals,
        margin=Margin(
            percent=percent,
            amount=margin_amount,
            overridden=overridden,
            override_reason=reason,
        ),
        logistics_sub_total=logistics_sub_total,
        client_total=client_total,
        configuration_gaps=gaps,
    )

    logger.debug(
        "Order pricing computed",
        order_id=str(order.id),
        client_total=str(client_total) if client_total is not None else None,
        margin_percent=str(percent),
        gaps=len(gaps),
    )
    return pricing
