"""
Service catalog and line item models.

Line items are charges attached to an order (or to an inbound request)
on top of the base operations and transport cost. They are never
deleted; voiding keeps the row for audit and removes it from pricing.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database.base import BaseModel


class ServiceCategory(str, Enum):
    ASSEMBLY = "ASSEMBLY"
    EQUIPMENT = "EQUIPMENT"
    HANDLING = "HANDLING"
    RESKIN = "RESKIN"
    TRANSPORT = "TRANSPORT"
    OTHER = "OTHER"


class LineItemType(str, Enum):
    CATALOG = "CATALOG"
    CUSTOM = "CUSTOM"


class BillingMode(str, Enum):
    """
    How a line item is charged.

    Only BILLABLE items contribute to pricing totals; NON_BILLABLE and
    COMPLIMENTARY items are listed for the client at zero cost.
    """

    BILLABLE = "BILLABLE"
    NON_BILLABLE = "NON_BILLABLE"
    COMPLIMENTARY = "COMPLIMENTARY"


class PurposeType(str, Enum):
    ORDER = "ORDER"
    INBOUND_REQUEST = "INBOUND_REQUEST"


class ServiceType(BaseModel):
    """Catalog service with its default unit rate."""

    __tablename__ = "service_types"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    category: Mapped[ServiceCategory] = mapped_column(
        SQLEnum(ServiceCategory, name="service_category", create_constraint=True),
        nullable=False,
    )
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    default_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Unit rate; NULL means the service must be quoted as custom",
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)


class LineItem(BaseModel):
    """
    A catalog or custom charge.

    CATALOG totals are always ``quantity * unit_rate`` computed by the
    ledger. CUSTOM totals are operator-entered and are added after the
    margin.
    """

    __tablename__ = "line_items"

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=True,
    )
    inbound_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        comment="Inbound stock request owning the item",
    )
    purpose_type: Mapped[PurposeType] = mapped_column(
        SQLEnum(PurposeType, name="purpose_type", create_constraint=True),
        nullable=False,
    )
    service_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("service_types.id", ondelete="RESTRICT"),
        nullable=True,
    )
    line_item_type: Mapped[LineItemType] = mapped_column(
        SQLEnum(LineItemType, name="line_item_type", create_constraint=True),
        nullable=False,
    )
    category: Mapped[ServiceCategory] = mapped_column(
        SQLEnum(ServiceCategory, name="service_category", create_constraint=True),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    unit_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    billing_mode: Mapped[BillingMode] = mapped_column(
        SQLEnum(BillingMode, name="billing_mode", create_constraint=True),
        nullable=False,
        default=BillingMode.BILLABLE,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        comment="Transport trip details for transport catalog items",
    )
    added_by: Mapped[str] = mapped_column(String(255), nullable=False)

    is_voided: Mapped[bool] = mapped_column(nullable=False, default=False)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voided_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "(order_id IS NOT NULL AND purpose_type = 'ORDER') OR "
            "(inbound_request_id IS NOT NULL AND purpose_type = 'INBOUND_REQUEST')",
            name="ck_line_items_owner",
        ),
        CheckConstraint("total >= 0", name="ck_line_items_total_non_negative"),
        CheckConstraint(
            "NOT is_voided OR void_reason IS NOT NULL",
            name="ck_line_items_void_reason",
        ),
        Index("ix_line_items_order", "order_id"),
        Index("ix_line_items_inbound_request", "inbound_request_id"),
    )

    @property
    def owner_id(self) -> Optional[uuid.UUID]:
        if self.purpose_type == PurposeType.ORDER:
            return self.order_id
        return self.inbound_request_id
