"""Transition events.

After an order transition commits, a ``TransitionOccurred`` event goes to
every in-process listener and to the Redis channel configured in
``APP_TRANSITION_EVENTS_CHANNEL``. Quote and confirmation notifications
are sent by the workers subscribed to that channel; this module never
formats messages.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from fulfillment.cache.redis_client import RedisClient
from fulfillment.core.config import get_settings
from fulfillment.core.logging import get_logger
from fulfillment.database.models.order import OrderStatus

logger = get_logger(__name__)

# Statuses whose transitions trigger client notifications downstream.
NOTIFY_STATUSES = frozenset({OrderStatus.QUOTED, OrderStatus.CONFIRMED})


@dataclass(frozen=True)
class TransitionOccurred:
    order_id: uuid.UUID
    order_code: str
    company_id: uuid.UUID
    from_status: OrderStatus
    to_status: OrderStatus
    actor_id: str
    notes: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def requires_notification(self) -> bool:
        return self.to_status in NOTIFY_STATUSES

    def to_message(self) -> dict[str, Any]:
        return {
            "event": "order.transition",
            "order_id": str(self.order_id),
            "order_code": self.order_code,
            "company_id": str(self.company_id),
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor_id": self.actor_id,
            "notes": self.notes,
            "notify": self.requires_notification,
            "occurred_at": self.occurred_at.isoformat(),
        }


Listener = Callable[[TransitionOccurred], Awaitable[None]]


class TransitionEventPublisher:
    """
    Fans committed transitions out to listeners and Redis.

    Delivery is best effort: the transition is already committed, so a
    failing listener or an unreachable Redis is logged and skipped.
    """

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        channel: Optional[str] = None,
    ):
        self._redis = redis_client
        self._channel = channel or get_settings().transition_events_channel
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def publish(self, event: TransitionOccurred) -> None:
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(
                    "Transition listener failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                    order_id=str(event.order_id),
                    to_status=event.to_status.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if self._redis is not None:
            try:
                await self._redis.publish(self._channel, event.to_message())
            except RedisError as e:
                logger.error(
                    "Failed to publish transition event",
                    channel=self._channel,
                    order_id=str(event.order_id),
                    error=str(e),
                )

        logger.info(
            "Transition event published",
            order_id=str(event.order_id),
            transition=f"{event.from_status.value}->{event.to_status.value}",
            notify=event.requires_notification,
        )
