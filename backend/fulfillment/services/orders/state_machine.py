"""Order state machine with role checks and transition guards.

The state machine is pure: it validates a requested transition against
the transition table, the role matrix and a set of guard predicates, and
raises the matching ``FulfillmentError`` when the request is rejected.
Persistence, history and bookings are handled by ``OrderService``.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from fulfillment.core.exceptions import (
    FulfillmentError,
    GuardNotSatisfied,
    InvalidTransition,
)
from fulfillment.core.logging import get_logger
from fulfillment.core.security import Actor, ensure_company_access, ensure_role
from fulfillment.database.models.order import Order
from fulfillment.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    get_transition_roles,
    validate_order_status_transition,
)
from fulfillment.services.pricing.engine import OrderPricing

logger = get_logger(__name__)


@dataclass
class GuardContext:
    """Facts about an order that guards need beyond the order row itself.

    ``pricing`` is the strict pricing breakdown when one could be
    computed; ``pricing_error`` holds the configuration error otherwise.
    """

    pricing: Optional[OrderPricing] = None
    pricing_error: Optional[FulfillmentError] = None
    pending_reskins: int = 0


Guard = Callable[[Order, GuardContext], Optional[str]]


class OrderStateMachine:
    """Validates order status transitions.

    Guards are keyed by ``(from, to)``; a key with ``to=None`` applies to
    every forward edge leaving ``from``. Cancellation is never guarded.
    Each guard returns None when satisfied or a message for the operator.
    """

    def __init__(self) -> None:
        self._guards: Dict[tuple[OrderStatus, Optional[OrderStatus]], Guard] = {
            (OrderStatus.PRICING_REVIEW, None): self._guard_pricing_complete,
            (OrderStatus.PENDING_APPROVAL, None): self._guard_quote_approvable,
            (OrderStatus.QUOTED, OrderStatus.CONFIRMED): self._guard_event_dates,
            (OrderStatus.CONFIRMED, OrderStatus.IN_PREPARATION): (
                self._guard_delivery_window
            ),
            (OrderStatus.CONFIRMED, OrderStatus.AWAITING_FABRICATION): (
                self._guard_has_pending_reskins
            ),
            (OrderStatus.AWAITING_FABRICATION, None): self._guard_fabrication_done,
        }

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        return get_allowed_order_transitions(order.status)

    def needs_pricing(self, current: OrderStatus, target: OrderStatus) -> bool:
        """Whether guards for this edge inspect the pricing breakdown."""
        return target != OrderStatus.CANCELLED and current in (
            OrderStatus.PRICING_REVIEW,
            OrderStatus.PENDING_APPROVAL,
        )

    def needs_reskin_count(self, current: OrderStatus, target: OrderStatus) -> bool:
        return target != OrderStatus.CANCELLED and current in (
            OrderStatus.CONFIRMED,
            OrderStatus.AWAITING_FABRICATION,
        )

    def ensure_reachable(self, order: Order, target: OrderStatus) -> None:
        """Reject targets that are not one step away from the current status.

        Raises:
            InvalidTransition: If ``target`` is not in the allowed-next set
        """
        if not validate_order_status_transition(order.status, target):
            raise InvalidTransition(
                order.status,
                target,
                allowed=get_allowed_order_transitions(order.status),
            )

    def ensure_permitted(self, order: Order, target: OrderStatus, actor: Actor) -> None:
        """Check the role matrix and the actor's company scope.

        Raises:
            Forbidden: If the actor may not perform this edge on this order
        """
        ensure_role(
            actor,
            get_transition_roles(order.status, target),
            action=f"move an order from {order.status.value} to {target.value}",
        )
        ensure_company_access(actor, order.company_id)

    def check_guards(
        self,
        order: Order,
        target: OrderStatus,
        context: GuardContext,
    ) -> None:
        """Run the guards registered for this edge.

        Raises:
            GuardNotSatisfied: With the first failing guard's message
        """
        if target == OrderStatus.CANCELLED:
            return

        for key in ((order.status, target), (order.status, None)):
            guard = self._guards.get(key)
            if guard is None:
                continue
            failure = guard(order, context)
            if failure is not None:
                logger.info(
                    "Transition guard not satisfied",
                    order_id=str(order.id),
                    transition=f"{order.status.value}->{target.value}",
                    guard=guard.__name__,
                )
                raise GuardNotSatisfied(
                    failure,
                    guard=guard.__name__.removeprefix("_guard_"),
                    order_id=order.order_id,
                    current_status=order.status.value,
                    requested_status=target.value,
                )

    def validate_transition(
        self,
        order: Order,
        target: OrderStatus,
        actor: Actor,
        context: Optional[GuardContext] = None,
    ) -> None:
        """Validate a transition request end to end.

        Checks run in a fixed order: reachability, then authorization,
        then guards, so an unreachable target is always reported as
        ``InvalidTransition`` whatever the actor's role.

        Raises:
            InvalidTransition: If ``target`` is not reachable
            Forbidden: If the actor may not perform the edge
            GuardNotSatisfied: If a precondition of the edge is unmet
        """
        self.ensure_reachable(order, target)
        self.ensure_permitted(order, target, actor)
        self.check_guards(order, target, context or GuardContext())

        logger.debug(
            "State transition validated",
            order_id=str(order.id),
            transition=f"{order.status.value}->{target.value}",
            actor_id=actor.id,
        )

    # Transition guards

    def _guard_pricing_complete(
        self, order: Order, context: GuardContext
    ) -> Optional[str]:
        if context.pricing is not None and context.pricing.is_complete:
            return None
        if context.pricing_error is not None:
            return f"Pricing is incomplete: {context.pricing_error.message}"
        return "Pricing is incomplete; compute a full price breakdown first"

    def _guard_quote_approvable(
        self, order: Order, context: GuardContext
    ) -> Optional[str]:
        incomplete = self._guard_pricing_complete(order, context)
        if incomplete is not None:
            return incomplete
        if order.margin_override_percent is not None and not (
            order.margin_override_reason or ""
        ).strip():
            return "Margin override is missing its justification"
        return None

    def _guard_event_dates(self, order: Order, context: GuardContext) -> Optional[str]:
        if order.has_event_dates:
            return None
        return "Event start and end dates are required to reserve assets"

    def _guard_delivery_window(
        self, order: Order, context: GuardContext
    ) -> Optional[str]:
        if order.has_delivery_window:
            return None
        return "Set a delivery window before preparing the order"

    def _guard_has_pending_reskins(
        self, order: Order, context: GuardContext
    ) -> Optional[str]:
        if context.pending_reskins > 0:
            return None
        return "Order has no pending reskin requests; move it to preparation instead"

    def _guard_fabrication_done(
        self, order: Order, context: GuardContext
    ) -> Optional[str]:
        if context.pending_reskins > 0:
            return (
                f"{context.pending_reskins} reskin request(s) still pending; "
                "complete or cancel them first"
            )
        return self._guard_delivery_window(order, context)
