"""Order lifecycle transition table and role matrix.

The table below is the single source of truth for which status may
follow which. Cancellation is modelled as an extra edge to CANCELLED
from every status in ``CANCELLABLE_STATUSES``; returning an order to
logistics (PENDING_APPROVAL -> PRICING_REVIEW) is a side-channel edge
handled by the order service and is not part of the forward table.
"""

from typing import Dict, FrozenSet, Set

from fulfillment.core.security import Role
from fulfillment.database.models.order import CancellationReason, OrderStatus, TripType

__all__ = [
    "OrderStatus",
    "TripType",
    "CancellationReason",
    "ORDER_STATUS_TRANSITIONS",
    "CANCELLABLE_STATUSES",
    "BOOKING_STATUSES",
    "get_allowed_order_transitions",
    "validate_order_status_transition",
    "get_transition_roles",
]


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.DRAFT: {OrderStatus.SUBMITTED},
    OrderStatus.SUBMITTED: {OrderStatus.PRICING_REVIEW},
    OrderStatus.PRICING_REVIEW: {OrderStatus.QUOTED, OrderStatus.PENDING_APPROVAL},
    OrderStatus.PENDING_APPROVAL: {OrderStatus.QUOTED},
    OrderStatus.QUOTED: {OrderStatus.CONFIRMED, OrderStatus.DECLINED},
    OrderStatus.CONFIRMED: {
        OrderStatus.IN_PREPARATION,
        OrderStatus.AWAITING_FABRICATION,
    },
    OrderStatus.AWAITING_FABRICATION: {OrderStatus.READY_FOR_DELIVERY},
    OrderStatus.IN_PREPARATION: {OrderStatus.READY_FOR_DELIVERY},
    OrderStatus.READY_FOR_DELIVERY: {OrderStatus.IN_TRANSIT},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.IN_USE},
    OrderStatus.IN_USE: {OrderStatus.AWAITING_RETURN},
    OrderStatus.AWAITING_RETURN: {OrderStatus.CLOSED},
    OrderStatus.DECLINED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.CLOSED: set(),
}

CANCELLABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.DRAFT,
        OrderStatus.SUBMITTED,
        OrderStatus.PRICING_REVIEW,
        OrderStatus.PENDING_APPROVAL,
        OrderStatus.QUOTED,
        OrderStatus.CONFIRMED,
        OrderStatus.AWAITING_FABRICATION,
        OrderStatus.IN_PREPARATION,
    }
)

# Statuses in which every order item must hold an asset booking.
BOOKING_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.AWAITING_FABRICATION,
        OrderStatus.IN_PREPARATION,
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.IN_USE,
        OrderStatus.AWAITING_RETURN,
    }
)

# Statuses in which line items of the order may still change.
LINE_ITEM_EDITABLE_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.SUBMITTED,
        OrderStatus.PRICING_REVIEW,
        OrderStatus.PENDING_APPROVAL,
    }
)

STAFF_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.LOGISTICS})

_CLIENT_EDGES: FrozenSet[tuple[OrderStatus, OrderStatus]] = frozenset(
    {
        (OrderStatus.DRAFT, OrderStatus.SUBMITTED),
        (OrderStatus.QUOTED, OrderStatus.CONFIRMED),
        (OrderStatus.QUOTED, OrderStatus.DECLINED),
    }
)

_ADMIN_ONLY_EDGES: FrozenSet[tuple[OrderStatus, OrderStatus]] = frozenset(
    {
        (OrderStatus.PENDING_APPROVAL, OrderStatus.QUOTED),
        (OrderStatus.PENDING_APPROVAL, OrderStatus.PRICING_REVIEW),
    }
)


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get every status reachable in one step, including cancellation.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses (empty for terminal statuses)
    """
    allowed = set(ORDER_STATUS_TRANSITIONS.get(current, set()))
    if current in CANCELLABLE_STATUSES:
        allowed.add(OrderStatus.CANCELLED)
    return allowed


def validate_order_status_transition(
    current: OrderStatus,
    target: OrderStatus,
) -> bool:
    """Check whether ``target`` directly follows ``current``."""
    return target in get_allowed_order_transitions(current)


def get_transition_roles(current: OrderStatus, target: OrderStatus) -> FrozenSet[Role]:
    """Roles permitted to perform the edge ``current -> target``.

    Client-facing edges (submitting a draft, accepting or declining a
    quote) are open to CLIENT and ADMIN, approving a quote is ADMIN only,
    and every operational edge including cancellation belongs to staff.
    """
    edge = (current, target)
    if edge in _CLIENT_EDGES:
        return frozenset({Role.CLIENT, Role.ADMIN})
    if edge in _ADMIN_ONLY_EDGES:
        return frozenset({Role.ADMIN})
    return STAFF_ROLES
