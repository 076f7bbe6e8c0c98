"""Line item request and response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fulfillment.database.models.line_item import (
    BillingMode,
    LineItemType,
    PurposeType,
    ServiceCategory,
)


class LineItemOwner(BaseModel):
    """Exactly one of ``order_id`` and ``inbound_request_id``."""

    order_id: Optional[UUID] = None
    inbound_request_id: Optional[UUID] = None

    @model_validator(mode="after")
    def exactly_one_owner(self):
        if (self.order_id is None) == (self.inbound_request_id is None):
            raise ValueError("Provide exactly one of order_id or inbound_request_id")
        return self


class CatalogLineItemCreate(LineItemOwner):
    service_type_id: UUID
    quantity: Decimal = Field(..., gt=0)
    billing_mode: BillingMode = BillingMode.BILLABLE
    metadata: Optional[dict[str, Any]] = Field(
        None,
        description="Trip details, transport services only",
    )
    notes: Optional[str] = Field(None, max_length=2000)


class CustomLineItemCreate(LineItemOwner):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    category: ServiceCategory
    total: Decimal = Field(..., gt=0)
    billing_mode: BillingMode = BillingMode.BILLABLE
    notes: Optional[str] = Field(None, max_length=2000)


class VoidLineItemRequest(BaseModel):
    reason: str


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    order_id: Optional[UUID] = None
    inbound_request_id: Optional[UUID] = None
    purpose_type: PurposeType
    service_type_id: Optional[UUID] = None
    line_item_type: LineItemType
    category: ServiceCategory
    description: str
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    unit_rate: Optional[Decimal] = None
    total: Decimal
    billing_mode: BillingMode
    notes: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="item_metadata")
    added_by: str
    is_voided: bool
    void_reason: Optional[str] = None
    voided_by: Optional[str] = None
    voided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
