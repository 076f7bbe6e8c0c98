"""
Margin and rate lookup.

Rate tables are loaded into a ``RateCard`` snapshot that the pricing
engine consumes without touching the database. Tier and transport
tables change rarely, so they are cached in Redis with a short TTL;
a Redis outage only disables the cache.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Optional, Sequence

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.cache.redis_client import (
    CacheKeyManager,
    RedisClient,
    get_cache_key_manager,
)
from fulfillment.core.config import get_settings
from fulfillment.core.exceptions import NoPricingTierFound, NoTransportRateFound
from fulfillment.core.logging import get_logger
from fulfillment.database.models.company import Company
from fulfillment.database.models.order import TripType
from fulfillment.database.models.pricing import PricingTier, TransportRate

logger = get_logger(__name__)


@dataclass(frozen=True)
class TierRate:
    volume_min: Decimal
    volume_max: Optional[Decimal]
    base_rate: Decimal

    def contains(self, volume: Decimal) -> bool:
        if volume < self.volume_min:
            return False
        return self.volume_max is None or volume < self.volume_max


@dataclass(frozen=True)
class TransportRateEntry:
    emirate: str
    city: Optional[str]
    trip_type: TripType
    vehicle_type: str
    rate: Decimal


@dataclass(frozen=True)
class RateCard:
    """Snapshot of the rate configuration used to price one order."""

    margin_percent: Decimal
    tiers: Sequence[TierRate]
    transport_rates: Sequence[TransportRateEntry]


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def select_tier(tiers: Sequence[TierRate], volume: Decimal) -> TierRate:
    """
    Find the tier whose ``[volume_min, volume_max)`` range contains volume.

    Raises:
        NoPricingTierFound: If no tier covers the volume
    """
    for tier in sorted(tiers, key=lambda t: t.volume_min):
        if tier.contains(volume):
            return tier
    raise NoPricingTierFound(volume)


def select_transport_rate(
    rates: Sequence[TransportRateEntry],
    emirate: Optional[str],
    city: Optional[str],
    trip_type: TripType,
    vehicle_type: str,
) -> TransportRateEntry:
    """
    Find the transport rate for a destination, trip and vehicle.

    A row for the exact city wins over an emirate-wide row (NULL city).

    Raises:
        NoTransportRateFound: If neither a city nor an emirate row matches
    """
    candidates = [
        r
        for r in rates
        if r.trip_type == trip_type and _norm(r.vehicle_type) == _norm(vehicle_type)
    ]

    if city:
        for rate in candidates:
            if rate.city is not None and _norm(rate.city) == _norm(city) and (
                not emirate or _norm(rate.emirate) == _norm(emirate)
            ):
                return rate

    if emirate:
        for rate in candidates:
            if rate.city is None and _norm(rate.emirate) == _norm(emirate):
                return rate

    raise NoTransportRateFound(emirate, city, trip_type, vehicle_type)


class RateLookup:
    """
    Loads rate configuration for pricing.

    Pass ``redis_client=None`` to disable caching (tests do this).
    """

    def __init__(
        self,
        session: AsyncSession,
        redis_client: Optional[RedisClient] = None,
        key_manager: Optional[CacheKeyManager] = None,
        cache_ttl_seconds: Optional[int] = None,
    ):
        self.session = session
        self._redis = redis_client
        self._keys = key_manager or get_cache_key_manager()
        self._ttl = (
            cache_ttl_seconds
            if cache_ttl_seconds is not None
            else get_settings().rate_cache_ttl_seconds
        )

    async def company_margin_percent(self, company_id: Any) -> Decimal:
        """Default margin of a company, falling back to the platform default."""
        company = await self.session.get(Company, company_id)
        if company is None or company.platform_margin_percent is None:
            return get_settings().default_margin_percent
        return Decimal(company.platform_margin_percent)

    async def pricing_tiers(self) -> list[TierRate]:
        cached = await self._cache_get(self._keys.pricing_tiers_key())
        if cached is not None:
            return [
                TierRate(
                    volume_min=Decimal(row["volume_min"]),
                    volume_max=(
                        Decimal(row["volume_max"])
                        if row["volume_max"] is not None
                        else None
                    ),
                    base_rate=Decimal(row["base_rate"]),
                )
                for row in cached
            ]

        result = await self.session.execute(
            select(PricingTier)
            .where(PricingTier.is_active.is_(True))
            .order_by(PricingTier.volume_min)
        )
        tiers = [
            TierRate(
                volume_min=Decimal(t.volume_min),
                volume_max=Decimal(t.volume_max) if t.volume_max is not None else None,
                base_rate=Decimal(t.base_rate),
            )
            for t in result.scalars().all()
        ]
        await self._cache_set(self._keys.pricing_tiers_key(), [asdict(t) for t in tiers])
        return tiers

    async def transport_rates(self) -> list[TransportRateEntry]:
        cached = await self._cache_get(self._keys.transport_rates_key())
        if cached is not None:
            return [
                TransportRateEntry(
                    emirate=row["emirate"],
                    city=row["city"],
                    trip_type=TripType(row["trip_type"]),
                    vehicle_type=row["vehicle_type"],
                    rate=Decimal(row["rate"]),
                )
                for row in cached
            ]

        result = await self.session.execute(
            select(TransportRate).where(TransportRate.is_active.is_(True))
        )
        rates = [
            TransportRateEntry(
                emirate=r.emirate,
                city=r.city,
                trip_type=TripType(r.trip_type),
                vehicle_type=r.vehicle_type,
                rate=Decimal(r.rate),
            )
            for r in result.scalars().all()
        ]
        await self._cache_set(
            self._keys.transport_rates_key(),
            [{**asdict(r), "trip_type": r.trip_type.value} for r in rates],
        )
        return rates

    async def rate_card(self, company_id: Any) -> RateCard:
        return RateCard(
            margin_percent=await self.company_margin_percent(company_id),
            tiers=await self.pricing_tiers(),
            transport_rates=await self.transport_rates(),
        )

    async def invalidate(self) -> int:
        """Drop cached rate tables after configuration changes."""
        if self._redis is None:
            return 0
        try:
            return await self._redis.delete_pattern(self._keys.rates_pattern())
        except RedisError as e:
            logger.warning("Failed to invalidate rate cache", error=str(e))
            return 0

    async def _cache_get(self, key: str) -> Optional[Any]:
        if self._redis is None or self._ttl <= 0:
            return None
        try:
            return await self._redis.get_json(key)
        except RedisError as e:
            logger.warning("Rate cache read failed", key=key, error=str(e))
            return None

    async def _cache_set(self, key: str, value: Any) -> None:
        if self._redis is None or self._ttl <= 0:
            return
        try:
            await self._redis.set_json(
                key,
                _stringify_decimals(value),
                ex=self._ttl,
            )
        except RedisError as e:
            logger.warning("Rate cache write failed", key=key, error=str(e))


def _stringify_decimals(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {k: str(v) if isinstance(v, Decimal) else v for k, v in row.items()}
        for row in rows
    ]
