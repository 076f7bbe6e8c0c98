"""
Tests for OrderService.

Covers creation, transitions with history and bookings, cancellation,
return to logistics, quote approval and operator field updates against
in-memory repositories.
"""

import asyncio
import itertools
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from fulfillment.core.exceptions import (
    Forbidden,
    GuardNotSatisfied,
    InsufficientAvailability,
    InvalidTransition,
    InvalidWindow,
    MarginOverrideReasonRequired,
    MarginUnchanged,
    NotFound,
    ValidationFailed,
)
from fulfillment.database.models.order import (
    CancellationReason,
    OrderItem,
    OrderStatus,
    TripType,
)
from fulfillment.database.models.reskin import ReskinStatus
from fulfillment.services.orders.enums import get_allowed_order_transitions
from fulfillment.services.orders.service import NewOrderItem, OrderService

from tests.conftest import COMPANY_ID, OTHER_COMPANY_ID, FakeSession


def history_for(store, order):
    return [h for h in store.history if h.order_id == order.id]


# ============================================================================
# Creation and reads
# ============================================================================


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_creates_draft_with_items(
        self, order_service: OrderService, client_actor, add_asset, store, session
    ) -> None:
        asset = add_asset()

        order = await order_service.create_order(
            client_actor,
            asset.company_id,
            [NewOrderItem(asset_id=asset.id, quantity=4)],
            event_start_date=date(2025, 6, 20),
            event_end_date=date(2025, 6, 22),
            venue_city="Dubai",
            venue_emirate="Dubai",
        )

        assert order.status == OrderStatus.DRAFT
        assert order.order_id.startswith("ORD-")
        assert order.order_id.endswith("-001")
        assert [i.quantity for i in order.items] == [4]
        assert store.orders[order.id] is order
        assert history_for(store, order) == []
        assert session.commits == 1

    @pytest.mark.asyncio
    async def test_order_codes_increment(
        self, order_service: OrderService, client_actor, add_asset
    ) -> None:
        asset = add_asset()
        items = [NewOrderItem(asset_id=asset.id, quantity=1)]

        first = await order_service.create_order(client_actor, asset.company_id, items)
        second = await order_service.create_order(client_actor, asset.company_id, items)

        assert first.order_id.endswith("-001")
        assert second.order_id.endswith("-002")

    @pytest.mark.asyncio
    async def test_requires_items(self, order_service: OrderService, client_actor) -> None:
        with pytest.raises(ValidationFailed):
            await order_service.create_order(client_actor, COMPANY_ID, [])

    @pytest.mark.asyncio
    async def test_rejects_zero_length_event(
        self, order_service: OrderService, client_actor, add_asset
    ) -> None:
        asset = add_asset()

        with pytest.raises(InvalidWindow):
            await order_service.create_order(
                client_actor,
                asset.company_id,
                [NewOrderItem(asset_id=asset.id, quantity=1)],
                event_start_date=date(2025, 6, 20),
                event_end_date=date(2025, 6, 20),
            )

    @pytest.mark.asyncio
    async def test_rejects_foreign_asset(
        self, order_service: OrderService, client_actor, add_asset, session
    ) -> None:
        foreign = add_asset(company_id=OTHER_COMPANY_ID)

        with pytest.raises(ValidationFailed):
            await order_service.create_order(
                client_actor,
                COMPANY_ID,
                [NewOrderItem(asset_id=foreign.id, quantity=1)],
            )

        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_client_cannot_set_refurb_days(
        self, order_service: OrderService, client_actor, add_asset
    ) -> None:
        asset = add_asset()

        with pytest.raises(ValidationFailed, match="logistics staff"):
            await order_service.create_order(
                client_actor,
                asset.company_id,
                [NewOrderItem(asset_id=asset.id, quantity=1, refurb_days=2)],
            )

    @pytest.mark.asyncio
    async def test_client_cannot_create_for_other_company(
        self, order_service: OrderService, client_actor, add_asset
    ) -> None:
        asset = add_asset(company_id=OTHER_COMPANY_ID)

        with pytest.raises(Forbidden):
            await order_service.create_order(
                client_actor, OTHER_COMPANY_ID, [NewOrderItem(asset_id=asset.id, quantity=1)]
            )


class TestReads:
    @pytest.mark.asyncio
    async def test_get_unknown_order(self, order_service: OrderService, admin) -> None:
        with pytest.raises(NotFound):
            await order_service.get_order(uuid.uuid4(), admin)

    @pytest.mark.asyncio
    async def test_other_company_cannot_read(
        self, order_service: OrderService, other_client, add_order
    ) -> None:
        order = add_order()

        with pytest.raises(Forbidden):
            await order_service.get_order(order.id, other_client)

    @pytest.mark.asyncio
    async def test_history_is_oldest_first(
        self, order_service: OrderService, client_actor, logistics, add_order
    ) -> None:
        order = add_order()

        await order_service.submit_transition(order.id, OrderStatus.SUBMITTED, client_actor)
        await order_service.submit_transition(order.id, OrderStatus.PRICING_REVIEW, logistics)

        history = await order_service.get_status_history(order.id, client_actor)
        assert [h.status for h in history] == [
            OrderStatus.SUBMITTED,
            OrderStatus.PRICING_REVIEW,
        ]
        assert [h.updated_by for h in history] == [client_actor.id, logistics.id]


# ============================================================================
# Transitions
# ============================================================================


class TestSubmitTransition:
    @pytest.mark.asyncio
    async def test_records_history_and_publishes_after_commit(
        self, order_service: OrderService, client_actor, add_order, store, session
    ) -> None:
        order = add_order()
        commits_at_publish = []

        async def listener(event) -> None:
            commits_at_publish.append(session.commits)

        order_service.publisher.subscribe(listener)

        entry = await order_service.submit_transition(
            order.id, OrderStatus.SUBMITTED, client_actor, notes="Please quote"
        )

        assert order.status == OrderStatus.SUBMITTED
        assert entry.status == OrderStatus.SUBMITTED
        assert entry.notes == "Please quote"
        assert history_for(store, order) == [entry]
        assert commits_at_publish == [1]

    @pytest.mark.asyncio
    async def test_invalid_transition_changes_nothing(
        self, order_service: OrderService, admin, add_order, store, session
    ) -> None:
        order = add_order()
        listener = AsyncMock()
        order_service.publisher.subscribe(listener)

        with pytest.raises(InvalidTransition):
            await order_service.submit_transition(order.id, OrderStatus.QUOTED, admin)

        assert order.status == OrderStatus.DRAFT
        assert history_for(store, order) == []
        assert session.rollbacks == 1
        assert session.commits == 0
        listener.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_through_transition_is_redirected(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order()

        with pytest.raises(ValidationFailed) as exc_info:
            await order_service.submit_transition(order.id, OrderStatus.CANCELLED, admin)

        assert exc_info.value.to_dict()["details"]["field"] == "requested_status"
        assert order.status == OrderStatus.DRAFT

    @pytest.mark.asyncio
    async def test_unknown_order(self, order_service: OrderService, admin, session) -> None:
        with pytest.raises(NotFound):
            await order_service.submit_transition(uuid.uuid4(), OrderStatus.SUBMITTED, admin)

        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_pricing_review_guard_uses_rate_card(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW, venue_emirate="Sharjah", venue_city="Sharjah")

        with pytest.raises(GuardNotSatisfied, match="No transport rate"):
            await order_service.submit_transition(
                order.id, OrderStatus.PENDING_APPROVAL, logistics
            )

        assert order.status == OrderStatus.PRICING_REVIEW

    @pytest.mark.asyncio
    async def test_pricing_review_to_pending_approval(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        await order_service.submit_transition(order.id, OrderStatus.PENDING_APPROVAL, logistics)

        assert order.status == OrderStatus.PENDING_APPROVAL

    @pytest.mark.asyncio
    async def test_confirmation_reserves_assets(
        self, order_service: OrderService, client_actor, add_order, store
    ) -> None:
        order = add_order(OrderStatus.QUOTED, quantity=3)

        await order_service.submit_transition(order.id, OrderStatus.CONFIRMED, client_actor)

        assert order.status == OrderStatus.CONFIRMED
        assert len(store.bookings) == 1
        assert store.bookings[0].order_id == order.id
        assert store.bookings[0].quantity == 3

    @pytest.mark.asyncio
    async def test_confirmation_books_items_missing_a_manual_reservation(
        self,
        order_service: OrderService,
        client_actor,
        logistics,
        add_order,
        add_asset,
        store,
    ) -> None:
        order = add_order(OrderStatus.QUOTED, quantity=2)
        second_asset = add_asset()
        second = OrderItem(
            id=uuid.uuid4(),
            order_id=order.id,
            asset_id=second_asset.id,
            quantity=3,
            refurb_days=0,
        )
        order.items.append(second)
        store.order_items[second.id] = second
        await order_service.bookings.reserve_for_order(
            logistics,
            order.items[0].asset_id,
            order.id,
            2,
            order.event_start_date,
            order.event_end_date,
        )

        await order_service.submit_transition(order.id, OrderStatus.CONFIRMED, client_actor)

        assert order.status == OrderStatus.CONFIRMED
        booked = {b.asset_id: b.quantity for b in store.bookings}
        assert booked == {order.items[0].asset_id: 2, second_asset.id: 3}
        assert len(store.bookings) == 2


    @pytest.mark.asyncio
    async def test_confirmation_fails_without_availability(
        self, order_service: OrderService, client_actor, add_order, add_asset, store, session
    ) -> None:
        asset = add_asset(total_quantity=4)
        first = add_order(OrderStatus.QUOTED, quantity=3, asset=asset)
        competing = add_order(OrderStatus.QUOTED, quantity=3, asset=asset)
        await order_service.submit_transition(first.id, OrderStatus.CONFIRMED, client_actor)

        with pytest.raises(InsufficientAvailability):
            await order_service.submit_transition(
                competing.id, OrderStatus.CONFIRMED, client_actor
            )

        assert competing.status == OrderStatus.QUOTED
        assert history_for(store, competing) == []
        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_pending_reskins_route_through_fabrication(
        self,
        order_service: OrderService,
        logistics,
        add_order,
        add_reskin,
        delivery_window,
    ) -> None:
        order = add_order(OrderStatus.CONFIRMED, **delivery_window)
        reskin = add_reskin(order)

        await order_service.submit_transition(
            order.id, OrderStatus.AWAITING_FABRICATION, logistics
        )
        with pytest.raises(GuardNotSatisfied):
            await order_service.submit_transition(
                order.id, OrderStatus.READY_FOR_DELIVERY, logistics
            )

        reskin.status = ReskinStatus.COMPLETE
        await order_service.submit_transition(
            order.id, OrderStatus.READY_FOR_DELIVERY, logistics
        )
        assert order.status == OrderStatus.READY_FOR_DELIVERY

    @pytest.mark.asyncio
    async def test_closing_keeps_bookings(
        self, order_service: OrderService, logistics, add_order, store
    ) -> None:
        order = add_order(OrderStatus.AWAITING_RETURN)
        await order_service.bookings.materialize_order_bookings(order)

        await order_service.submit_transition(order.id, OrderStatus.CLOSED, logistics)

        assert order.status == OrderStatus.CLOSED
        assert all(b.released_at is None for b in store.bookings)


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_cancel_releases_bookings(
        self, order_service: OrderService, admin, logistics, add_order, store
    ) -> None:
        order = add_order(OrderStatus.QUOTED)
        await order_service.submit_transition(order.id, OrderStatus.CONFIRMED, admin)
        assert len(store.bookings) == 1

        entry = await order_service.cancel_order(
            order.id, logistics, reason="event_cancelled", notes="Venue flooded"
        )

        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == CancellationReason.EVENT_CANCELLED
        assert order.cancellation_notes == "Venue flooded"
        assert entry.notes == "event_cancelled: Venue flooded"
        booking = store.bookings[0]
        assert booking.released_at is not None
        assert booking.release_reason == "Order cancelled (event_cancelled)"

    @pytest.mark.asyncio
    async def test_unknown_reason(self, order_service: OrderService, admin, add_order) -> None:
        order = add_order()

        with pytest.raises(ValidationFailed) as exc_info:
            await order_service.cancel_order(order.id, admin, reason="bored", notes="n/a")

        assert "client_requested" in exc_info.value.to_dict()["details"]["allowed"]
        assert order.status == OrderStatus.DRAFT

    @pytest.mark.asyncio
    async def test_notes_are_required(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order()

        with pytest.raises(ValidationFailed):
            await order_service.cancel_order(
                order.id, admin, reason="client_requested", notes="  "
            )

    @pytest.mark.asyncio
    async def test_clients_cannot_cancel(
        self, order_service: OrderService, client_actor, add_order
    ) -> None:
        order = add_order(OrderStatus.QUOTED)

        with pytest.raises(Forbidden):
            await order_service.cancel_order(
                order.id, client_actor, reason="client_requested", notes="Changed plans"
            )

    @pytest.mark.asyncio
    async def test_dispatched_order_cannot_be_cancelled(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.IN_TRANSIT)

        with pytest.raises(InvalidTransition):
            await order_service.cancel_order(
                order.id, admin, reason="other", notes="Too late"
            )

        assert order.status == OrderStatus.IN_TRANSIT


class TestReturnToLogistics:
    @pytest.mark.asyncio
    async def test_returns_with_reason(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        entry = await order_service.return_to_logistics(
            order.id, admin, "Transport rate looks outdated"
        )

        assert order.status == OrderStatus.PRICING_REVIEW
        assert entry.notes == "Returned to logistics: Transport rate looks outdated"

    @pytest.mark.asyncio
    async def test_short_reason_is_rejected(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        with pytest.raises(ValidationFailed, match="7/10"):
            await order_service.return_to_logistics(order.id, admin, "  too low ")

    @pytest.mark.asyncio
    async def test_admin_only(self, order_service: OrderService, logistics, add_order) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        with pytest.raises(Forbidden):
            await order_service.return_to_logistics(
                order.id, logistics, "Transport rate looks outdated"
            )

    @pytest.mark.asyncio
    async def test_only_from_pending_approval(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.QUOTED)

        with pytest.raises(InvalidTransition):
            await order_service.return_to_logistics(
                order.id, admin, "Transport rate looks outdated"
            )


# ============================================================================
# Quote approval
# ============================================================================


class TestApproveQuote:
    @pytest.mark.asyncio
    async def test_approve_without_override(
        self, order_service: OrderService, admin, add_order, store
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        pricing = await order_service.approve_quote(order.id, admin)

        assert order.status == OrderStatus.QUOTED
        assert pricing.client_total == Decimal("1875")
        assert not pricing.margin.overridden
        assert history_for(store, order)[-1].notes == "Quote approved"

    @pytest.mark.asyncio
    async def test_approve_with_override(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        pricing = await order_service.approve_quote(
            order.id,
            admin,
            margin_override=Decimal("30"),
            override_reason="Rush weekend install",
        )

        assert pricing.margin.percent == Decimal("30")
        assert pricing.client_total == Decimal("1950")
        assert order.margin_override_percent == Decimal("30")
        assert order.margin_override_reason == "Rush weekend install"
        assert order.margin_overridden_by == admin.id
        assert order.margin_overridden_at is not None

    @pytest.mark.asyncio
    async def test_override_requires_reason(
        self, order_service: OrderService, admin, add_order, session
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        with pytest.raises(MarginOverrideReasonRequired):
            await order_service.approve_quote(order.id, admin, margin_override=Decimal("30"))

        assert order.status == OrderStatus.PENDING_APPROVAL
        assert order.margin_override_percent is None
        assert session.rollbacks == 1

    @pytest.mark.asyncio
    async def test_override_equal_to_company_margin(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        with pytest.raises(MarginUnchanged):
            await order_service.approve_quote(
                order.id,
                admin,
                margin_override=Decimal("25.00"),
                override_reason="Same as contract",
            )

    @pytest.mark.asyncio
    async def test_logistics_cannot_approve(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)

        with pytest.raises(Forbidden):
            await order_service.approve_quote(order.id, logistics)

    @pytest.mark.asyncio
    async def test_wrong_status(self, order_service: OrderService, admin, add_order) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        with pytest.raises(InvalidTransition):
            await order_service.approve_quote(order.id, admin)

    @pytest.mark.asyncio
    async def test_quoted_event_is_flagged_for_notification(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PENDING_APPROVAL)
        listener = AsyncMock()
        order_service.publisher.subscribe(listener)

        await order_service.approve_quote(order.id, admin)

        event = listener.await_args.args[0]
        assert event.to_status == OrderStatus.QUOTED
        assert event.requires_notification


# ============================================================================
# Field updates
# ============================================================================


class TestFieldUpdates:
    @pytest.mark.asyncio
    async def test_update_job_number(
        self, order_service: OrderService, logistics, add_order, session
    ) -> None:
        order = add_order(OrderStatus.CONFIRMED)

        await order_service.update_job_number(order.id, logistics, "  JOB-881 ")

        assert order.job_number == "JOB-881"
        assert session.commits == 1

    @pytest.mark.asyncio
    async def test_clients_cannot_update_fields(
        self, order_service: OrderService, client_actor, add_order
    ) -> None:
        order = add_order()

        with pytest.raises(Forbidden):
            await order_service.update_job_number(order.id, client_actor, "JOB-1")

    @pytest.mark.asyncio
    async def test_terminal_orders_are_read_only(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.CLOSED)

        with pytest.raises(ValidationFailed):
            await order_service.update_trip_type(order.id, logistics, TripType.ONE_WAY)

    @pytest.mark.asyncio
    async def test_update_time_windows(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.CONFIRMED)
        delivery_start = datetime(2025, 1, 9, 8, tzinfo=timezone.utc)
        delivery_end = datetime(2025, 1, 9, 12, tzinfo=timezone.utc)
        pickup_start = datetime(2025, 1, 16, 8, tzinfo=timezone.utc)
        pickup_end = datetime(2025, 1, 16, 12, tzinfo=timezone.utc)

        await order_service.update_time_windows(
            order.id, logistics, delivery_start, delivery_end, pickup_start, pickup_end
        )

        assert order.has_delivery_window
        assert order.pickup_window_end == pickup_end

    @pytest.mark.asyncio
    async def test_pickup_before_delivery_end_is_rejected(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.CONFIRMED)

        with pytest.raises(InvalidWindow) as exc_info:
            await order_service.update_time_windows(
                order.id,
                logistics,
                datetime(2025, 1, 9, 8, tzinfo=timezone.utc),
                datetime(2025, 1, 9, 12, tzinfo=timezone.utc),
                datetime(2025, 1, 9, 11, tzinfo=timezone.utc),
                datetime(2025, 1, 9, 15, tzinfo=timezone.utc),
            )

        assert exc_info.value.to_dict()["details"]["window"] == "pickup"
        assert order.delivery_window_start is None

    @pytest.mark.asyncio
    async def test_zero_length_delivery_window_is_rejected(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.CONFIRMED)
        moment = datetime(2025, 1, 9, 8, tzinfo=timezone.utc)

        with pytest.raises(InvalidWindow):
            await order_service.update_time_windows(
                order.id, logistics, moment, moment, None, None
            )

    @pytest.mark.asyncio
    async def test_update_vehicle(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        await order_service.update_vehicle(
            order.id, logistics, "7_TON", "Stage truss needs a bigger truck"
        )

        assert order.transport_vehicle_type == "7_TON"
        assert order.vehicle_changed
        assert order.vehicle_change_reason == "Stage truss needs a bigger truck"

    @pytest.mark.asyncio
    async def test_vehicle_change_needs_reason(
        self, order_service: OrderService, logistics, add_order
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        with pytest.raises(ValidationFailed) as exc_info:
            await order_service.update_vehicle(order.id, logistics, "7_TON", "bigger")

        assert exc_info.value.to_dict()["details"]["field"] == "vehicle_change_reason"
        assert not order.vehicle_changed

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vehicle", ["STANDARD", "HELICOPTER"])
    async def test_vehicle_must_be_known_and_different(
        self, order_service: OrderService, logistics, add_order, vehicle
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        with pytest.raises(ValidationFailed):
            await order_service.update_vehicle(
                order.id, logistics, vehicle, "Switching vehicle for access"
            )

    @pytest.mark.asyncio
    async def test_update_trip_type(
        self, order_service: OrderService, admin, add_order
    ) -> None:
        order = add_order(OrderStatus.PRICING_REVIEW)

        await order_service.update_trip_type(order.id, admin, TripType.ONE_WAY)

        assert order.transport_trip_type == TripType.ONE_WAY


class TestConcurrentTransitions:
    @pytest.mark.asyncio
    async def test_second_confirmation_sees_committed_status(
        self, build_order_service, store, client_actor, add_order
    ) -> None:
        order = add_order(OrderStatus.QUOTED)
        first = build_order_service(FakeSession(store))
        second = build_order_service(FakeSession(store))

        results = await asyncio.gather(
            first.submit_transition(order.id, OrderStatus.CONFIRMED, client_actor),
            second.submit_transition(order.id, OrderStatus.CONFIRMED, client_actor),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InvalidTransition) for r in results) == 1
        assert len(history_for(store, order)) == 1
        assert len(store.bookings) == 1


NON_ADJACENT_PAIRS = [
    (current, target)
    for current, target in itertools.product(OrderStatus, OrderStatus)
    if target not in get_allowed_order_transitions(current)
]


class TestNonAdjacentTransitions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "current,target",
        NON_ADJACENT_PAIRS,
        ids=[f"{c.value}->{t.value}" for c, t in NON_ADJACENT_PAIRS],
    )
    async def test_pair_is_rejected_without_side_effects(
        self,
        order_service: OrderService,
        admin,
        add_order,
        store,
        session,
        current: OrderStatus,
        target: OrderStatus,
    ) -> None:
        order = add_order(current)
        listener = AsyncMock()
        order_service.publisher.subscribe(listener)

        with pytest.raises(InvalidTransition):
            await order_service.submit_transition(order.id, target, admin)

        assert order.status == current
        assert history_for(store, order) == []
        assert store.bookings == []
        assert session.rollbacks == 1
        assert session.commits == 0
        listener.assert_not_awaited()
