"""
Reskin (rebranding/fabrication) request model.

A pending reskin request on an order holds it in AWAITING_FABRICATION;
completing the request produces a new branded asset.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database.base import BaseModel


class ReskinStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ReskinRequest(BaseModel):
    __tablename__ = "reskin_requests"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    original_asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assets.id", ondelete="RESTRICT"),
        nullable=False,
    )
    target_brand: Mapped[str] = mapped_column(String(200), nullable=False)
    client_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ReskinStatus] = mapped_column(
        SQLEnum(
            ReskinStatus,
            name="reskin_status",
            create_constraint=True,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=ReskinStatus.PENDING,
    )
    new_asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assets.id", ondelete="SET NULL"),
        nullable=True,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completion_photos: Mapped[list[str]] = mapped_column(
        ARRAY(Text),
        nullable=False,
        default=list,
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_reskin_requests_order_status", "order_id", "status"),
    )
