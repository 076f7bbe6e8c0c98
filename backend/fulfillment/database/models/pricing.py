"""
Rate configuration models: volume tiers, transport rates and vehicles.

These tables are maintained out of band by platform staff and are only
read by the fulfillment core.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database.base import BaseModel
from fulfillment.database.models.order import TripType


class PricingTier(BaseModel):
    """Base operations rate per cubic metre for a volume range [min, max)."""

    __tablename__ = "pricing_tiers"

    volume_min: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    volume_max: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 3),
        nullable=True,
        comment="Exclusive upper bound; NULL means unbounded",
    )
    base_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("volume_min >= 0", name="ck_pricing_tiers_min"),
        CheckConstraint(
            "volume_max IS NULL OR volume_max > volume_min",
            name="ck_pricing_tiers_range",
        ),
    )


class TransportRate(BaseModel):
    """
    Transport price for a destination, trip type and vehicle type.

    A NULL city makes the rate apply to every city of the emirate; a
    city-specific row takes precedence.
    """

    __tablename__ = "transport_rates"

    emirate: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trip_type: Mapped[TripType] = mapped_column(
        SQLEnum(TripType, name="trip_type", create_constraint=True),
        nullable=False,
    )
    vehicle_type: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_transport_rates_rate"),
        Index(
            "ix_transport_rates_lookup",
            "emirate",
            "city",
            "trip_type",
            "vehicle_type",
        ),
    )


class VehicleType(BaseModel):
    __tablename__ = "vehicle_types"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    capacity_volume: Mapped[Decimal] = mapped_column(
        Numeric(10, 3),
        nullable=False,
        comment="Load capacity in cubic metres",
    )
    is_default: Mapped[bool] = mapped_column(nullable=False, default=False)
