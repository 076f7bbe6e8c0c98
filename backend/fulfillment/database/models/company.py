"""
Company model.

A company is the client organisation that owns orders and assets. Its
platform margin is the default markup applied on top of the logistics
sub-total when pricing an order.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database.base import BaseModel


class Company(BaseModel):
    """Client company with its default platform margin."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        unique=True,
        comment="Company display name",
    )

    platform_margin_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("25.00"),
        server_default=text("25.00"),
        comment="Default margin percent applied to logistics sub-total",
    )

    __table_args__ = (
        CheckConstraint(
            "platform_margin_percent >= 0 AND platform_margin_percent <= 100",
            name="ck_companies_margin_range",
        ),
    )
