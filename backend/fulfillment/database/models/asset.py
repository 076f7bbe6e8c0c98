"""
Asset and asset booking models.

Bookings reserve a quantity of an asset for a blocked date range
``[blocked_from, blocked_until)``. A booking is never edited; releasing
it sets ``released_at`` and frees the quantity for other orders.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database.base import BaseModel


class Asset(BaseModel):
    """Physical inventory item owned by a company."""

    __tablename__ = "assets"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    refurb_days_estimate: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    source_asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assets.id", ondelete="SET NULL"),
        nullable=True,
        comment="Original asset this one was reskinned from",
    )

    __table_args__ = (
        CheckConstraint("total_quantity >= 0", name="ck_assets_quantity"),
    )


class AssetBooking(BaseModel):
    """Reservation of asset units for an order."""

    __tablename__ = "asset_bookings"

    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    blocked_from: Mapped[date] = mapped_column(Date, nullable=False)
    blocked_until: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Exclusive end of the blocked period",
    )
    released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    release_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_asset_bookings_quantity"),
        CheckConstraint(
            "blocked_from < blocked_until",
            name="ck_asset_bookings_window",
        ),
        Index(
            "ix_asset_bookings_active_window",
            "asset_id",
            "blocked_from",
            "blocked_until",
            postgresql_where="released_at IS NULL",
        ),
    )
