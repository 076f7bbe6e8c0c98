"""
FastAPI dependencies for authentication, sessions and services.

Bearer tokens are verified here and turned into an ``Actor``; role and
company checks happen inside the services so that every entry point
enforces them the same way.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.cache.redis_client import RedisClient, get_redis_client
from fulfillment.core.logging import get_logger, set_actor
from fulfillment.core.security import Actor, TokenError, actor_from_claims, decode_token
from fulfillment.database.connection import get_db
from fulfillment.services.bookings.tracker import BookingTracker
from fulfillment.services.line_items.ledger import LineItemLedger
from fulfillment.services.orders.events import TransitionEventPublisher
from fulfillment.services.orders.service import OrderService
from fulfillment.services.pricing.service import PricingService
from fulfillment.services.reskin.service import ReskinService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Verify the bearer token and return the calling actor.

    Raises:
        HTTPException: 401 if the token is missing, expired or invalid
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        actor = actor_from_claims(decode_token(credentials.credentials))
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    set_actor(actor.id, actor.role.value)
    return actor


async def get_optional_redis() -> Optional[RedisClient]:
    """
    Shared Redis client, or None when Redis is unreachable.

    Rate caching and event fan-out degrade to direct database reads and
    in-process listeners without Redis.
    """
    try:
        return await get_redis_client()
    except RedisError as e:
        logger.warning("Redis unavailable, continuing without it", error=str(e))
        return None


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
OptionalRedis = Annotated[Optional[RedisClient], Depends(get_optional_redis)]


def get_pricing_service(db: DatabaseSession, redis: OptionalRedis) -> PricingService:
    return PricingService(db, redis_client=redis)


def get_order_service(db: DatabaseSession, redis: OptionalRedis) -> OrderService:
    return OrderService(
        db,
        pricing_service=PricingService(db, redis_client=redis),
        publisher=TransitionEventPublisher(redis_client=redis),
    )


def get_line_item_ledger(db: DatabaseSession) -> LineItemLedger:
    return LineItemLedger(db)


def get_booking_tracker(db: DatabaseSession) -> BookingTracker:
    return BookingTracker(db)


def get_reskin_service(
    db: DatabaseSession,
    orders: Annotated[OrderService, Depends(get_order_service)],
    ledger: Annotated[LineItemLedger, Depends(get_line_item_ledger)],
) -> ReskinService:
    return ReskinService(db, order_service=orders, ledger=ledger)


PricingServiceDep = Annotated[PricingService, Depends(get_pricing_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
LineItemLedgerDep = Annotated[LineItemLedger, Depends(get_line_item_ledger)]
BookingTrackerDep = Annotated[BookingTracker, Depends(get_booking_tracker)]
ReskinServiceDep = Annotated[ReskinService, Depends(get_reskin_service)]
