"""
Order service.

Orchestrates every operation that changes an order: status transitions,
cancellation, return to logistics, quote approval and field updates.
Each public mutation is one unit of work: the order row is locked with
``SELECT ... FOR UPDATE``, guards are evaluated, status, history and
bookings are written, and the transaction commits. Any error rolls the
whole unit back. Transition events are published only after commit.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    InvalidTransition,
    InvalidWindow,
    MarginOverrideReasonRequired,
    MarginUnchanged,
    NoPricingTierFound,
    NoTransportRateFound,
    NotFound,
    ValidationFailed,
    require_reason,
)
from fulfillment.core.logging import get_logger
from fulfillment.core.security import Actor, Role, ensure_company_access, ensure_role
from fulfillment.database.models.asset import Asset
from fulfillment.database.models.order import Order, OrderItem, OrderStatusHistory
from fulfillment.services.bookings.tracker import BookingTracker
from fulfillment.services.orders.enums import (
    BOOKING_STATUSES,
    STAFF_ROLES,
    CancellationReason,
    OrderStatus,
    TripType,
)
from fulfillment.services.orders.events import TransitionEventPublisher, TransitionOccurred
from fulfillment.services.orders.repository import OrderRepository
from fulfillment.services.orders.state_machine import GuardContext, OrderStateMachine
from fulfillment.services.pricing.engine import OrderPricing
from fulfillment.services.pricing.service import PricingService

logger = get_logger(__name__)


@dataclass(frozen=True)
class NewOrderItem:
    asset_id: uuid.UUID
    quantity: int
    refurb_days: int = 0


class OrderService:
    """Service for order lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[OrderRepository] = None,
        state_machine: Optional[OrderStateMachine] = None,
        pricing_service: Optional[PricingService] = None,
        booking_tracker: Optional[BookingTracker] = None,
        publisher: Optional[TransitionEventPublisher] = None,
    ):
        self.session = session
        self.repository = repository or OrderRepository(session)
        self.state_machine = state_machine or OrderStateMachine()
        self.pricing = pricing_service or PricingService(
            session, order_repository=self.repository
        )
        self.bookings = booking_tracker or BookingTracker(session)
        self.publisher = publisher or TransitionEventPublisher()

    # Unit of work helpers

    async def _lock_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self.repository.get(order_id, for_update=True)
        if order is None:
            raise NotFound("Order", order_id)
        ensure_company_access(actor, order.company_id)
        return order

    async def _rollback(self, operation: str, order_id: uuid.UUID, error: Exception) -> None:
        await self.session.rollback()
        logger.warning(
            "Order operation rolled back",
            operation=operation,
            order_id=str(order_id),
            error_code=getattr(error, "code", None),
            error=str(error),
        )

    async def _apply_transition(
        self,
        order: Order,
        target: OrderStatus,
        actor: Actor,
        notes: Optional[str] = None,
        release_reason: Optional[str] = None,
    ) -> tuple[OrderStatusHistory, TransitionOccurred]:
        """
        Write an already validated transition into the current transaction.

        Bookings are materialized when the order enters a status that
        requires reserved inventory and released when it is cancelled.
        Nothing is committed here.
        """
        if target in BOOKING_STATUSES:
            await self.bookings.materialize_order_bookings(order)
        elif target == OrderStatus.CANCELLED:
            await self.bookings.release_order_bookings(
                order.id,
                reason=release_reason or "Order cancelled",
                commit=False,
            )

        previous = order.status
        order.status = target
        await self.repository.flush()

        entry = await self.repository.add_history(
            OrderStatusHistory(
                order_id=order.id,
                status=target,
                timestamp=datetime.now(timezone.utc),
                updated_by=actor.id,
                notes=notes,
            )
        )
        event = TransitionOccurred(
            order_id=order.id,
            order_code=order.order_id,
            company_id=order.company_id,
            from_status=previous,
            to_status=target,
            actor_id=actor.id,
            notes=notes,
        )
        return entry, event

    async def commit_and_publish(self, event: TransitionOccurred) -> None:
        await self.session.commit()
        logger.info(
            "Order transitioned",
            order_id=str(event.order_id),
            order_code=event.order_code,
            transition=f"{event.from_status.value}->{event.to_status.value}",
            actor_id=event.actor_id,
        )
        await self.publisher.publish(event)

    async def _guard_context(
        self,
        order: Order,
        target: OrderStatus,
        pricing: Optional[OrderPricing] = None,
    ) -> GuardContext:
        context = GuardContext(pricing=pricing)
        if pricing is None and self.state_machine.needs_pricing(order.status, target):
            try:
                context.pricing = await self.pricing.compute_for_order(order)
            except (NoPricingTierFound, NoTransportRateFound) as e:
                context.pricing_error = e
        if self.state_machine.needs_reskin_count(order.status, target):
            context.pending_reskins = await self.repository.count_pending_reskins(
                order.id
            )
        return context

    # Creation and reads

    async def create_order(
        self,
        actor: Actor,
        company_id: uuid.UUID,
        items: Sequence[NewOrderItem],
        **fields: Any,
    ) -> Order:
        """
        Create a DRAFT order with its asset items.

        Args:
            actor: Creating user
            company_id: Owning company
            items: Assets and quantities
            **fields: Event, venue, volume and transport fields

        Raises:
            Forbidden: If the actor cannot act for the company
            ValidationFailed: If items are missing or reference foreign assets
            InvalidWindow: If the event end precedes its start
        """
        ensure_company_access(actor, company_id)
        if not items:
            raise ValidationFailed("An order needs at least one item", field="items")

        start, end = fields.get("event_start_date"), fields.get("event_end_date")
        if start is not None and end is not None and end <= start:
            raise InvalidWindow(
                "Event end date must be after the event start date",
                event_start=start,
                event_end=end,
            )

        try:
            for item in items:
                if item.quantity <= 0:
                    raise ValidationFailed("Item quantity must be at least 1", field="items")
                if item.refurb_days and actor.role == Role.CLIENT:
                    raise ValidationFailed(
                        "Refurbishment days are set by logistics staff",
                        field="items",
                    )
                asset = await self.session.get(Asset, item.asset_id)
                if asset is None:
                    raise NotFound("Asset", item.asset_id)
                if asset.company_id != company_id:
                    raise ValidationFailed(
                        "Asset belongs to a different company",
                        field="items",
                        asset_id=item.asset_id,
                    )

            code = await self.repository.next_order_code(date.today())
            order = await self.repository.add(
                Order(
                    order_id=code,
                    company_id=company_id,
                    status=OrderStatus.DRAFT,
                    **fields,
                )
            )
            for item in items:
                self.session.add(
                    OrderItem(
                        order_id=order.id,
                        asset_id=item.asset_id,
                        quantity=item.quantity,
                        refurb_days=item.refurb_days,
                    )
                )
            await self.session.commit()
        except Exception as e:
            await self._rollback("create_order", company_id, e)
            raise

        await self.session.refresh(order, attribute_names=["items"])
        logger.info(
            "Order created",
            order_id=str(order.id),
            order_code=order.order_id,
            company_id=str(company_id),
            item_count=len(items),
        )
        return order

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self.repository.get(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        ensure_company_access(actor, order.company_id)
        return order

    async def get_status_history(
        self,
        order_id: uuid.UUID,
        actor: Actor,
    ) -> Sequence[OrderStatusHistory]:
        """Status history of an order, oldest entry first."""
        await self.get_order(order_id, actor)
        return await self.repository.list_history(order_id)

    # Transitions

    async def submit_transition(
        self,
        order_id: uuid.UUID,
        requested_status: OrderStatus,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> OrderStatusHistory:
        """
        Move an order to the requested status.

        Returns:
            The history entry recorded for the transition

        Raises:
            NotFound: If the order does not exist
            InvalidTransition: If the status is not reachable
            Forbidden: If the actor may not perform the edge
            GuardNotSatisfied: If a precondition of the edge is unmet
            InsufficientAvailability: If assets cannot be reserved
            ValidationFailed: If CANCELLED is requested without a reason
        """
        try:
            order = await self._lock_order(order_id, actor)
            self.state_machine.ensure_reachable(order, requested_status)
            if requested_status == OrderStatus.CANCELLED:
                raise ValidationFailed(
                    "Cancelling an order requires a cancellation reason and notes",
                    field="requested_status",
                )
            self.state_machine.ensure_permitted(order, requested_status, actor)
            context = await self._guard_context(order, requested_status)
            self.state_machine.check_guards(order, requested_status, context)

            entry, event = await self._apply_transition(
                order, requested_status, actor, notes=notes
            )
        except Exception as e:
            await self._rollback("submit_transition", order_id, e)
            raise

        await self.commit_and_publish(event)
        return entry

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str,
        notes: str,
    ) -> OrderStatusHistory:
        """
        Cancel an order and release its bookings.

        Raises:
            ValidationFailed: If the reason is unknown or notes are empty
            InvalidTransition: If the order can no longer be cancelled
            Forbidden: If the actor is not ADMIN or LOGISTICS
        """
        try:
            entry, event = await self.cancel_in_transaction(order_id, actor, reason, notes)
        except Exception as e:
            await self._rollback("cancel_order", order_id, e)
            raise

        await self.commit_and_publish(event)
        return entry

    async def cancel_in_transaction(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str,
        notes: str,
    ) -> tuple[OrderStatusHistory, TransitionOccurred]:
        """
        Cancel an order inside the caller's transaction.

        The caller owns the unit of work: it passes the
        returned event to ``commit_and_publish`` or rolls back.
        """
        try:
            cancellation_reason = CancellationReason(reason)
        except ValueError:
            raise ValidationFailed(
                f"Unknown cancellation reason '{reason}'",
                field="reason",
                allowed=[r.value for r in CancellationReason],
            ) from None
        notes = (notes or "").strip()
        if not notes:
            raise ValidationFailed("Cancellation notes are required", field="notes")

        order = await self._lock_order(order_id, actor)
        self.state_machine.ensure_reachable(order, OrderStatus.CANCELLED)
        self.state_machine.ensure_permitted(order, OrderStatus.CANCELLED, actor)

        order.cancellation_reason = cancellation_reason
        order.cancellation_notes = notes
        return await self._apply_transition(
            order,
            OrderStatus.CANCELLED,
            actor,
            notes=f"{cancellation_reason.value}: {notes}",
            release_reason=f"Order cancelled ({cancellation_reason.value})",
        )

    async def return_to_logistics(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str,
    ) -> OrderStatusHistory:
        """
        Send an order awaiting approval back to pricing review.

        Raises:
            Forbidden: If the actor is not ADMIN
            ValidationFailed: If the reason is shorter than 10 characters
            InvalidTransition: If the order is not PENDING_APPROVAL
        """
        try:
            ensure_role(actor, {Role.ADMIN}, action="return orders to logistics")
            reason = require_reason(reason)
            order = await self._lock_order(order_id, actor)
            if order.status != OrderStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    order.status,
                    OrderStatus.PRICING_REVIEW,
                    allowed=self.state_machine.get_allowed_transitions(order),
                )
            entry, event = await self._apply_transition(
                order,
                OrderStatus.PRICING_REVIEW,
                actor,
                notes=f"Returned to logistics: {reason}",
            )
        except Exception as e:
            await self._rollback("return_to_logistics", order_id, e)
            raise

        await self.commit_and_publish(event)
        return entry

    async def approve_quote(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        margin_override: Optional[Decimal] = None,
        override_reason: Optional[str] = None,
    ) -> OrderPricing:
        """
        Approve the quote of an order awaiting approval and move it to QUOTED.

        Line items are read while the order lock is held, so the returned
        pricing is exactly what the quote was approved with.

        Raises:
            Forbidden: If the actor is not ADMIN
            InvalidTransition: If the order is not PENDING_APPROVAL
            MarginOverrideReasonRequired: If an override lacks a reason
            MarginUnchanged: If the override equals the applied margin
            NoPricingTierFound, NoTransportRateFound: Configuration gaps
        """
        try:
            ensure_role(actor, {Role.ADMIN}, action="approve quotes")
            order = await self._lock_order(order_id, actor)
            if order.status != OrderStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    order.status,
                    OrderStatus.QUOTED,
                    allowed=self.state_machine.get_allowed_transitions(order),
                )

            reason = (override_reason or "").strip()
            if margin_override is not None:
                margin_override = Decimal(margin_override)
                if not reason:
                    raise MarginOverrideReasonRequired(margin_override)
                applied = order.margin_override_percent
                if applied is None:
                    applied = await self.pricing.company_margin_percent(order)
                if Decimal(applied) == margin_override:
                    raise MarginUnchanged(margin_override)

                order.margin_override_percent = margin_override
                order.margin_override_reason = reason
                order.margin_overridden_by = actor.id
                order.margin_overridden_at = datetime.now(timezone.utc)

            pricing = await self.pricing.compute_for_order(order)
            context = await self._guard_context(order, OrderStatus.QUOTED, pricing=pricing)
            self.state_machine.check_guards(order, OrderStatus.QUOTED, context)

            notes = "Quote approved"
            if margin_override is not None:
                notes = f"Quote approved with margin override {margin_override}%: {reason}"
            _, event = await self._apply_transition(
                order, OrderStatus.QUOTED, actor, notes=notes
            )
        except Exception as e:
            await self._rollback("approve_quote", order_id, e)
            raise

        await self.commit_and_publish(event)
        logger.info(
            "Quote approved",
            order_id=str(order_id),
            client_total=str(pricing.client_total),
            margin_percent=str(pricing.margin.percent),
            overridden=pricing.margin.overridden,
        )
        return pricing

    # Field updates

    async def _lock_editable(self, order_id: uuid.UUID, actor: Actor, action: str) -> Order:
        ensure_role(actor, STAFF_ROLES, action=action)
        order = await self._lock_order(order_id, actor)
        if order.status.is_terminal:
            raise ValidationFailed(
                f"Order is {order.status.display_name} and can no longer be edited",
                field="status",
                status=order.status.value,
            )
        return order

    async def _commit_update(self, order: Order, operation: str, **changes: Any) -> Order:
        await self.session.commit()
        logger.info(
            "Order updated",
            operation=operation,
            order_id=str(order.id),
            **{k: str(v) if v is not None else None for k, v in changes.items()},
        )
        return order

    async def update_job_number(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        job_number: Optional[str],
    ) -> Order:
        try:
            order = await self._lock_editable(order_id, actor, "update job numbers")
            order.job_number = (job_number or "").strip() or None
            await self.repository.flush()
        except Exception as e:
            await self._rollback("update_job_number", order_id, e)
            raise
        return await self._commit_update(order, "update_job_number", job_number=order.job_number)

    async def update_time_windows(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        delivery_window_start: Optional[datetime],
        delivery_window_end: Optional[datetime],
        pickup_window_start: Optional[datetime],
        pickup_window_end: Optional[datetime],
    ) -> Order:
        """
        Replace the delivery and pickup windows.

        Raises:
            InvalidWindow: If a window ends before it starts or pickup starts
                before delivery ends
        """
        try:
            validate_time_windows(
                delivery_window_start,
                delivery_window_end,
                pickup_window_start,
                pickup_window_end,
            )
            order = await self._lock_editable(order_id, actor, "update time windows")
            order.delivery_window_start = delivery_window_start
            order.delivery_window_end = delivery_window_end
            order.pickup_window_start = pickup_window_start
            order.pickup_window_end = pickup_window_end
            await self.repository.flush()
        except Exception as e:
            await self._rollback("update_time_windows", order_id, e)
            raise
        return await self._commit_update(
            order,
            "update_time_windows",
            delivery_window_start=delivery_window_start,
            pickup_window_start=pickup_window_start,
        )

    async def update_vehicle(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        vehicle_type: str,
        reason: str,
    ) -> Order:
        """
        Change the transport vehicle with a justification.

        Raises:
            ValidationFailed: If the reason is too short, the vehicle type
                is unknown or unchanged
        """
        try:
            reason = require_reason(reason, field="vehicle_change_reason")
            order = await self._lock_editable(order_id, actor, "change vehicles")
            if not await self.repository.vehicle_type_exists(vehicle_type):
                raise ValidationFailed(
                    f"Unknown vehicle type '{vehicle_type}'",
                    field="vehicle_type",
                )
            if vehicle_type == order.transport_vehicle_type:
                raise ValidationFailed(
                    f"Order already uses vehicle type '{vehicle_type}'",
                    field="vehicle_type",
                )
            order.transport_vehicle_type = vehicle_type
            order.vehicle_changed = True
            order.vehicle_change_reason = reason
            await self.repository.flush()
        except Exception as e:
            await self._rollback("update_vehicle", order_id, e)
            raise
        return await self._commit_update(order, "update_vehicle", vehicle_type=vehicle_type)

    async def update_trip_type(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        trip_type: TripType,
    ) -> Order:
        try:
            order = await self._lock_editable(order_id, actor, "change trip types")
            order.transport_trip_type = TripType(trip_type)
            await self.repository.flush()
        except Exception as e:
            await self._rollback("update_trip_type", order_id, e)
            raise
        return await self._commit_update(order, "update_trip_type", trip_type=trip_type)


def validate_time_windows(
    delivery_start: Optional[datetime],
    delivery_end: Optional[datetime],
    pickup_start: Optional[datetime],
    pickup_end: Optional[datetime],
) -> None:
    """
    Check delivery and pickup windows.

    Raises:
        InvalidWindow: If a complete window does not end after it starts,
            or pickup starts before delivery ends
    """
    if delivery_start is not None and delivery_end is not None:
        if delivery_start >= delivery_end:
            raise InvalidWindow(
                "Delivery window must end after it starts",
                window="delivery",
            )
    if pickup_start is not None and pickup_end is not None:
        if pickup_start >= pickup_end:
            raise InvalidWindow(
                "Pickup window must end after it starts",
                window="pickup",
            )
    if pickup_start is not None and delivery_end is not None:
        if pickup_start < delivery_end:
            raise InvalidWindow(
                "Pickup cannot start before the delivery window ends",
                window="pickup",
            )
