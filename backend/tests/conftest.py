"""
Pytest configuration and shared test fixtures.

Services are exercised against in-memory fakes of their repositories
sharing one ``FakeStore``. ``FakeSession`` stands in for the async
SQLAlchemy session: it counts commits and rollbacks and emulates
``SELECT ... FOR UPDATE`` row locks with per-row asyncio locks that are
released when the owning session commits or rolls back.
"""

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-fulfillment-core")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy import inspect

from fulfillment.core.security import Actor, Role
from fulfillment.database.models.asset import Asset, AssetBooking
from fulfillment.database.models.company import Company
from fulfillment.database.models.line_item import (
    BillingMode,
    LineItem,
    LineItemType,
    PurposeType,
    ServiceCategory,
    ServiceType,
)
from fulfillment.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    TripType,
)
from fulfillment.database.models.reskin import ReskinRequest, ReskinStatus
from fulfillment.services.bookings.tracker import BookingTracker
from fulfillment.services.line_items.ledger import LineItemLedger
from fulfillment.services.orders.events import TransitionEventPublisher
from fulfillment.services.orders.service import OrderService
from fulfillment.services.pricing.rate_lookup import RateCard, TierRate, TransportRateEntry
from fulfillment.services.pricing.service import PricingService
from fulfillment.services.reskin.service import ReskinService

COMPANY_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_COMPANY_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


# ============================================================================
# In-memory store and session
# ============================================================================


def fill_defaults(obj: Any) -> Any:
    """Apply id and scalar column defaults the way a flush would."""
    if getattr(obj, "id", None) is None:
        obj.id = uuid.uuid4()
    for attr in inspect(type(obj)).column_attrs:
        default = attr.columns[0].default
        if getattr(obj, attr.key) is None and default is not None and default.is_scalar:
            setattr(obj, attr.key, default.arg)
    return obj


@dataclass
class FakeStore:
    companies: dict[uuid.UUID, Company] = field(default_factory=dict)
    orders: dict[uuid.UUID, Order] = field(default_factory=dict)
    order_items: dict[uuid.UUID, OrderItem] = field(default_factory=dict)
    history: list[OrderStatusHistory] = field(default_factory=list)
    assets: dict[uuid.UUID, Asset] = field(default_factory=dict)
    bookings: list[AssetBooking] = field(default_factory=list)
    service_types: dict[uuid.UUID, ServiceType] = field(default_factory=dict)
    line_items: dict[uuid.UUID, LineItem] = field(default_factory=dict)
    reskins: dict[uuid.UUID, ReskinRequest] = field(default_factory=dict)
    vehicle_types: set[str] = field(default_factory=lambda: {"STANDARD", "7_TON", "10_TON"})
    locks: dict[Any, asyncio.Lock] = field(default_factory=dict)

    def by_model(self, model: type) -> dict[uuid.UUID, Any]:
        return {
            Company: self.companies,
            Order: self.orders,
            OrderItem: self.order_items,
            Asset: self.assets,
            ServiceType: self.service_types,
            LineItem: self.line_items,
            ReskinRequest: self.reskins,
        }[model]


class FakeSession:
    """Async session double with commit/rollback counters and row locks."""

    def __init__(self, store: FakeStore):
        self.store = store
        self.commits = 0
        self.rollbacks = 0
        self.added: list[Any] = []
        self._held: dict[Any, asyncio.Lock] = {}

    async def lock(self, key: Any) -> None:
        if key in self._held:
            return
        lock = self.store.locks.setdefault(key, asyncio.Lock())
        await lock.acquire()
        self._held[key] = lock

    def _release(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    async def commit(self) -> None:
        self.commits += 1
        self._release()

    async def rollback(self) -> None:
        self.rollbacks += 1
        self._release()

    async def flush(self) -> None:
        return None

    async def refresh(self, obj: Any, attribute_names: Optional[list[str]] = None) -> None:
        return None

    async def get(self, model: type, key: uuid.UUID) -> Any:
        return self.store.by_model(model).get(key)

    def add(self, obj: Any) -> None:
        fill_defaults(obj)
        self.added.append(obj)
        if isinstance(obj, OrderItem):
            self.store.order_items[obj.id] = obj
            order = self.store.orders.get(obj.order_id)
            if order is not None:
                order.items.append(obj)


# ============================================================================
# Repository fakes
# ============================================================================


class FakeOrderRepository:
    def __init__(self, store: FakeStore, session: FakeSession):
        self.store = store
        self.session = session

    async def get(self, order_id, for_update=False):
        if for_update:
            await self.session.lock(("order", order_id))
        return self.store.orders.get(order_id)

    async def add(self, order):
        fill_defaults(order)
        self.store.orders[order.id] = order
        return order

    async def next_order_code(self, on: date) -> str:
        prefix = f"ORD-{on:%Y%m%d}-"
        count = sum(1 for o in self.store.orders.values() if o.order_id.startswith(prefix))
        return f"{prefix}{count + 1:03d}"

    async def add_history(self, entry):
        fill_defaults(entry)
        self.store.history.append(entry)
        return entry

    async def list_history(self, order_id):
        return sorted(
            (h for h in self.store.history if h.order_id == order_id),
            key=lambda h: h.timestamp,
        )

    async def count_pending_reskins(self, order_id):
        return sum(
            1
            for r in self.store.reskins.values()
            if r.order_id == order_id and r.status == ReskinStatus.PENDING
        )

    async def vehicle_type_exists(self, code):
        return code in self.store.vehicle_types

    async def flush(self):
        return None


class FakeBookingRepository:
    def __init__(self, store: FakeStore, session: FakeSession):
        self.store = store
        self.session = session

    async def get_asset(self, asset_id, for_update=False):
        if for_update:
            await self.session.lock(("asset", asset_id))
        return self.store.assets.get(asset_id)

    async def add_asset(self, asset):
        fill_defaults(asset)
        self.store.assets[asset.id] = asset
        return asset

    async def sum_overlapping(self, asset_id, blocked_from, blocked_until, exclude_order_id=None):
        # Yield so that unlocked concurrent reservations would interleave here.
        await asyncio.sleep(0)
        return sum(
            b.quantity
            for b in self.store.bookings
            if b.asset_id == asset_id
            and b.released_at is None
            and b.blocked_from < blocked_until
            and blocked_from < b.blocked_until
            and (exclude_order_id is None or b.order_id != exclude_order_id)
        )

    async def add_booking(self, booking):
        fill_defaults(booking)
        self.store.bookings.append(booking)
        return booking

    async def list_active_for_order(self, order_id):
        return [
            b for b in self.store.bookings if b.order_id == order_id and b.released_at is None
        ]

    async def release(self, bookings, reason, released_at):
        for booking in bookings:
            booking.released_at = released_at
            booking.release_reason = reason


class FakeLineItemRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def get_service_type(self, service_type_id):
        return self.store.service_types.get(service_type_id)

    async def get(self, item_id, for_update=False):
        return self.store.line_items.get(item_id)

    async def add(self, item):
        fill_defaults(item)
        self.store.line_items[item.id] = item
        return item

    async def list_for_owner(self, purpose_type, owner_id, include_voided=False):
        return [
            item
            for item in self.store.line_items.values()
            if item.purpose_type == purpose_type
            and item.owner_id == owner_id
            and (include_voided or not item.is_voided)
        ]

    async def flush(self):
        return None


class FakeReskinRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def get(self, reskin_id, for_update=False):
        return self.store.reskins.get(reskin_id)

    async def add(self, reskin):
        fill_defaults(reskin)
        self.store.reskins[reskin.id] = reskin
        return reskin

    async def get_order_item(self, item_id):
        return self.store.order_items.get(item_id)

    async def list_for_order(self, order_id):
        return [r for r in self.store.reskins.values() if r.order_id == order_id]

    async def flush(self):
        return None


class FakeRateLookup:
    def __init__(self, rate_card: RateCard):
        self.card = rate_card

    async def company_margin_percent(self, company_id):
        return self.card.margin_percent

    async def rate_card(self, company_id):
        return self.card


# ============================================================================
# Factories
# ============================================================================


def make_order(
    status: OrderStatus = OrderStatus.DRAFT,
    company_id: uuid.UUID = COMPANY_ID,
    **overrides: Any,
) -> Order:
    fields = dict(
        id=uuid.uuid4(),
        order_id="ORD-20250620-001",
        company_id=company_id,
        status=status,
        event_start_date=date(2025, 1, 10),
        event_end_date=date(2025, 1, 15),
        venue_name="Expo Hall 4",
        venue_city="Dubai",
        venue_emirate="Dubai",
        calculated_volume=Decimal("10"),
        calculated_weight=Decimal("500"),
        transport_trip_type=TripType.ROUND_TRIP,
        transport_vehicle_type="STANDARD",
        vehicle_changed=False,
    )
    fields.update(overrides)
    return Order(**fields)


def make_line_item(
    order_id: uuid.UUID,
    total: str,
    line_item_type: LineItemType = LineItemType.CATALOG,
    billing_mode: BillingMode = BillingMode.BILLABLE,
    is_voided: bool = False,
) -> LineItem:
    return LineItem(
        id=uuid.uuid4(),
        order_id=order_id,
        purpose_type=PurposeType.ORDER,
        line_item_type=line_item_type,
        category=ServiceCategory.HANDLING,
        description="Forklift handling",
        total=Decimal(total),
        billing_mode=billing_mode,
        added_by="logistics-1",
        is_voided=is_voided,
    )


def default_rate_card(margin: str = "25") -> RateCard:
    """Tier 0-20 m3 at 100/m3; Dubai round trip STANDARD at 500."""
    return RateCard(
        margin_percent=Decimal(margin),
        tiers=[
            TierRate(Decimal("0"), Decimal("20"), Decimal("100")),
            TierRate(Decimal("20"), None, Decimal("80")),
        ],
        transport_rates=[
            TransportRateEntry("Dubai", None, TripType.ROUND_TRIP, "STANDARD", Decimal("500")),
            TransportRateEntry("Dubai", None, TripType.ONE_WAY, "STANDARD", Decimal("300")),
            TransportRateEntry(
                "Abu Dhabi", "Al Ain", TripType.ROUND_TRIP, "STANDARD", Decimal("900")
            ),
            TransportRateEntry(
                "Abu Dhabi", None, TripType.ROUND_TRIP, "STANDARD", Decimal("700")
            ),
        ],
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def logistics() -> Actor:
    return Actor(id="logistics-1", role=Role.LOGISTICS)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(id="client-1", role=Role.CLIENT, companies=frozenset({COMPANY_ID}))


@pytest.fixture
def other_client() -> Actor:
    return Actor(id="client-2", role=Role.CLIENT, companies=frozenset({OTHER_COMPANY_ID}))


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.companies[COMPANY_ID] = Company(
        id=COMPANY_ID, name="Acme Events", platform_margin_percent=Decimal("25.00")
    )
    return store


@pytest.fixture
def session(store: FakeStore) -> FakeSession:
    return FakeSession(store)


@pytest.fixture
def rate_card() -> RateCard:
    return default_rate_card()


@pytest.fixture
def publisher() -> TransitionEventPublisher:
    return TransitionEventPublisher(redis_client=None, channel="order-transitions")


@pytest.fixture
def build_order_service(store, rate_card, publisher):
    """Build an OrderService wired to fakes for a given session."""

    def build(session: FakeSession) -> OrderService:
        order_repository = FakeOrderRepository(store, session)
        return OrderService(
            session,
            repository=order_repository,
            pricing_service=PricingService(
                session,
                rate_lookup=FakeRateLookup(rate_card),
                line_item_repository=FakeLineItemRepository(store),
                order_repository=order_repository,
            ),
            booking_tracker=BookingTracker(
                session,
                repository=FakeBookingRepository(store, session),
                order_repository=order_repository,
            ),
            publisher=publisher,
        )

    return build


@pytest.fixture
def order_service(build_order_service, session) -> OrderService:
    return build_order_service(session)


@pytest.fixture
def pricing_service(store, session, rate_card) -> PricingService:
    return PricingService(
        session,
        rate_lookup=FakeRateLookup(rate_card),
        line_item_repository=FakeLineItemRepository(store),
        order_repository=FakeOrderRepository(store, session),
    )


@pytest.fixture
def ledger(store, session) -> LineItemLedger:
    return LineItemLedger(
        session,
        repository=FakeLineItemRepository(store),
        order_repository=FakeOrderRepository(store, session),
    )


@pytest.fixture
def tracker(store, session) -> BookingTracker:
    return BookingTracker(
        session,
        repository=FakeBookingRepository(store, session),
        order_repository=FakeOrderRepository(store, session),
    )


@pytest.fixture
def reskin_service(store, session, order_service, ledger) -> ReskinService:
    return ReskinService(
        session,
        repository=FakeReskinRepository(store),
        booking_repository=FakeBookingRepository(store, session),
        order_service=order_service,
        ledger=ledger,
    )


@pytest.fixture
def add_asset(store):
    def add(total_quantity: int = 10, company_id: uuid.UUID = COMPANY_ID, **fields) -> Asset:
        asset = Asset(
            id=uuid.uuid4(),
            name=fields.pop("name", "Branded arch"),
            company_id=company_id,
            total_quantity=total_quantity,
            refurb_days_estimate=fields.pop("refurb_days_estimate", 0),
            **fields,
        )
        store.assets[asset.id] = asset
        return asset

    return add


@pytest.fixture
def add_order(store, add_asset):
    """Store an order holding one item of a fresh asset."""

    def add(status: OrderStatus = OrderStatus.DRAFT, quantity: int = 2, **overrides) -> Order:
        asset = overrides.pop("asset", None) or add_asset()
        order = make_order(status=status, **overrides)
        item = OrderItem(
            id=uuid.uuid4(),
            order_id=order.id,
            asset_id=asset.id,
            quantity=quantity,
            refurb_days=0,
        )
        order.items.append(item)
        store.orders[order.id] = order
        store.order_items[item.id] = item
        return order

    return add


@pytest.fixture
def add_reskin(store):
    def add(order: Order, status: ReskinStatus = ReskinStatus.PENDING) -> ReskinRequest:
        item = order.items[0]
        reskin = ReskinRequest(
            id=uuid.uuid4(),
            order_id=order.id,
            order_item_id=item.id,
            original_asset_id=item.asset_id,
            target_brand="Nova Launch 2025",
            status=status,
            completion_photos=[],
        )
        store.reskins[reskin.id] = reskin
        return reskin

    return add


@pytest.fixture
def delivery_window() -> dict[str, datetime]:
    return {
        "delivery_window_start": datetime(2025, 1, 9, 8, tzinfo=timezone.utc),
        "delivery_window_end": datetime(2025, 1, 9, 12, tzinfo=timezone.utc),
    }
