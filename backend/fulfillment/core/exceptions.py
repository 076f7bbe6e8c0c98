"""
Error taxonomy for the fulfillment core.

Every error carries a stable machine-readable code, an operator-facing
message and structured context. The HTTP layer maps ``status_code`` to
the response status; services raise these and never return partial
results.
"""

from typing import Any, Iterable, Optional


class FulfillmentError(Exception):
    """Base exception for fulfillment core operations."""

    status_code = 400

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class NotFound(FulfillmentError):
    """Raised when a referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            code="NOT_FOUND",
            entity=entity,
            entity_id=entity_id,
        )


class ValidationFailed(FulfillmentError):
    """Raised when operation input is rejected before any state change."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, code="VALIDATION_FAILED", field=field, **context)


class Forbidden(FulfillmentError):
    """Raised when the actor's role or company scope does not permit an action."""

    status_code = 403

    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="FORBIDDEN", **context)


class InvalidTransition(FulfillmentError):
    """Raised when the requested status is not reachable from the current one."""

    status_code = 409

    def __init__(self, current: Any, requested: Any, allowed: Iterable[Any] = ()):
        allowed_values = sorted(str(getattr(s, "value", s)) for s in allowed)
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        if allowed_values:
            hint = f"allowed next statuses: {', '.join(allowed_values)}"
        else:
            hint = f"{current_value} is a terminal status"
        super().__init__(
            f"Cannot move order from {current_value} to {requested_value}; {hint}",
            code="INVALID_TRANSITION",
            current_status=current_value,
            requested_status=requested_value,
            allowed_transitions=allowed_values,
        )


class GuardNotSatisfied(FulfillmentError):
    """Raised when a transition is reachable but its precondition is unmet."""

    status_code = 409

    def __init__(self, message: str, guard: str, **context: Any):
        super().__init__(message, code="GUARD_NOT_SATISFIED", guard=guard, **context)
        self.guard = guard


class NoPricingTierFound(FulfillmentError):
    """Raised when no base-operations tier covers the order volume."""

    status_code = 422

    def __init__(self, volume: Any):
        super().__init__(
            f"No base operations pricing tier covers a volume of {volume} m³; "
            "add a tier for this volume before quoting",
            code="NO_PRICING_TIER_FOUND",
            volume=volume,
        )


class NoTransportRateFound(FulfillmentError):
    """Raised when the transport rate table has no matching row."""

    status_code = 422

    def __init__(self, emirate: Any, city: Any, trip_type: Any, vehicle_type: Any):
        super().__init__(
            f"No transport rate configured for {city or emirate} "
            f"({getattr(trip_type, 'value', trip_type)}, {vehicle_type}); "
            "line items can still be added while the rate is configured",
            code="NO_TRANSPORT_RATE_FOUND",
            emirate=emirate,
            city=city,
            trip_type=getattr(trip_type, "value", trip_type),
            vehicle_type=vehicle_type,
        )


class MarginOverrideReasonRequired(FulfillmentError):
    status_code = 422

    def __init__(self, percent: Any):
        super().__init__(
            "A reason is required when overriding the platform margin",
            code="MARGIN_OVERRIDE_REASON_REQUIRED",
            margin_percent=percent,
        )


class MarginUnchanged(FulfillmentError):
    status_code = 422

    def __init__(self, percent: Any):
        super().__init__(
            f"Margin override of {percent}% equals the margin already applied; "
            "submit without an override instead",
            code="MARGIN_UNCHANGED",
            margin_percent=percent,
        )


class InvalidWindow(FulfillmentError):
    """Raised for zero-length or inverted event/time windows."""

    status_code = 422

    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="INVALID_WINDOW", **context)


class InsufficientAvailability(FulfillmentError):
    """Raised when a reservation would oversubscribe an asset."""

    status_code = 409

    def __init__(self, asset_id: Any, requested: int, available: int, **context: Any):
        super().__init__(
            f"Only {max(available, 0)} unit(s) of asset {asset_id} are available "
            f"for the requested period; {requested} requested",
            code="INSUFFICIENT_AVAILABILITY",
            asset_id=asset_id,
            requested=requested,
            available=max(available, 0),
            **context,
        )


MIN_REASON_LENGTH = 10


def require_reason(reason: Optional[str], field: str = "reason") -> str:
    """
    Validate a free-text justification.

    Args:
        reason: Text supplied by the operator
        field: Field name reported on failure

    Returns:
        The stripped reason

    Raises:
        ValidationFailed: If the stripped reason is shorter than 10 characters
    """
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationFailed(
            f"{field.replace('_', ' ').capitalize()} must be at least "
            f"{MIN_REASON_LENGTH} characters ({len(cleaned)}/{MIN_REASON_LENGTH})",
            field=field,
        )
    return cleaned
