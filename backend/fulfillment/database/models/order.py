"""
Order, order item and status history models.

An order moves through the fulfillment lifecycle defined in
``fulfillment.services.orders.enums``. Status changes are only made by
the order service, which appends exactly one ``OrderStatusHistory`` row
per accepted transition.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database.base import Base, BaseModel


class OrderStatus(str, Enum):
    """Order lifecycle statuses."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PRICING_REVIEW = "PRICING_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    QUOTED = "QUOTED"
    DECLINED = "DECLINED"
    CONFIRMED = "CONFIRMED"
    AWAITING_FABRICATION = "AWAITING_FABRICATION"
    IN_PREPARATION = "IN_PREPARATION"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    IN_USE = "IN_USE"
    AWAITING_RETURN = "AWAITING_RETURN"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """
        Parse a status name, case-insensitively.

        Raises:
            ValueError: If value is not a known status
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Invalid order status: {value}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DECLINED, OrderStatus.CANCELLED, OrderStatus.CLOSED)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class TripType(str, Enum):
    ONE_WAY = "ONE_WAY"
    ROUND_TRIP = "ROUND_TRIP"


class CancellationReason(str, Enum):
    CLIENT_REQUESTED = "client_requested"
    ASSET_UNAVAILABLE = "asset_unavailable"
    PRICING_DISPUTE = "pricing_dispute"
    EVENT_CANCELLED = "event_cancelled"
    FABRICATION_FAILED = "fabrication_failed"
    OTHER = "other"


class Order(BaseModel):
    """
    Client order for event logistics.

    ``order_id`` is the human-readable code (ORD-YYYYMMDD-NNN) shown to
    operators; ``id`` is the internal key used by every foreign key.
    """

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable order code",
    )

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
        default=OrderStatus.DRAFT,
        index=True,
    )

    # Event and venue
    event_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    event_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    venue_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    venue_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    venue_emirate: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    venue_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Delivery and pickup windows
    delivery_window_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivery_window_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pickup_window_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pickup_window_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    job_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Logistics inputs to pricing
    calculated_volume: Mapped[Decimal] = mapped_column(
        Numeric(10, 3),
        nullable=False,
        default=Decimal("0"),
        comment="Total volume in cubic metres",
    )
    calculated_weight: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Total weight in kilograms",
    )
    transport_trip_type: Mapped[TripType] = mapped_column(
        SQLEnum(TripType, name="trip_type", create_constraint=True),
        nullable=False,
        default=TripType.ROUND_TRIP,
    )
    transport_vehicle_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="STANDARD",
    )
    vehicle_changed: Mapped[bool] = mapped_column(nullable=False, default=False)
    vehicle_change_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Margin override recorded by quote approval
    margin_override_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    margin_override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    margin_overridden_by: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    margin_overridden_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    cancellation_reason: Mapped[Optional[CancellationReason]] = mapped_column(
        SQLEnum(CancellationReason, name="cancellation_reason", create_constraint=True),
        nullable=True,
    )
    cancellation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "delivery_window_start IS NULL OR delivery_window_end IS NULL "
            "OR delivery_window_start < delivery_window_end",
            name="ck_orders_delivery_window",
        ),
        CheckConstraint(
            "pickup_window_start IS NULL OR pickup_window_end IS NULL "
            "OR pickup_window_start < pickup_window_end",
            name="ck_orders_pickup_window",
        ),
        CheckConstraint(
            "pickup_window_start IS NULL OR delivery_window_end IS NULL "
            "OR pickup_window_start >= delivery_window_end",
            name="ck_orders_pickup_after_delivery",
        ),
        Index("ix_orders_company_status", "company_id", "status"),
    )

    @property
    def has_delivery_window(self) -> bool:
        return (
            self.delivery_window_start is not None
            and self.delivery_window_end is not None
        )

    @property
    def has_event_dates(self) -> bool:
        return self.event_start_date is not None and self.event_end_date is not None


class OrderItem(BaseModel):
    """An asset line on an order."""

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    asset_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("assets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    refurb_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Refurbishment days added to the preparation buffer",
    )

    order: Mapped[Order] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("refurb_days >= 0", name="ck_order_items_refurb_non_negative"),
    )


class OrderStatusHistory(Base):
    """Append-only record of accepted status changes."""

    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", create_constraint=True),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_order_status_history_order_ts", "order_id", "timestamp"),
    )
