"""
Database models package.

Importing this package registers every table on ``Base.metadata`` for
relationship resolution and Alembic autogeneration.
"""

from fulfillment.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from fulfillment.database.models.asset import Asset, AssetBooking
from fulfillment.database.models.company import Company
from fulfillment.database.models.line_item import (
    BillingMode,
    LineItem,
    LineItemType,
    PurposeType,
    ServiceCategory,
    ServiceType,
)
from fulfillment.database.models.order import (
    CancellationReason,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    TripType,
)
from fulfillment.database.models.pricing import PricingTier, TransportRate, VehicleType
from fulfillment.database.models.reskin import ReskinRequest, ReskinStatus

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Asset",
    "AssetBooking",
    "Company",
    "BillingMode",
    "LineItem",
    "LineItemType",
    "PurposeType",
    "ServiceCategory",
    "ServiceType",
    "CancellationReason",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "TripType",
    "PricingTier",
    "TransportRate",
    "VehicleType",
    "ReskinRequest",
    "ReskinStatus",
]
