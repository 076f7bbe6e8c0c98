"""Reskin workflow schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from fulfillment.database.models.reskin import ReskinStatus
from fulfillment.schemas.line_items import LineItemResponse
from fulfillment.services.reskin.service import ReskinOrderAction


class ProcessReskinRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    target_brand: str = Field(..., min_length=1, max_length=200)
    cost: Decimal = Field(..., gt=0, description="Rebrand cost charged to the order")
    client_notes: Optional[str] = Field(None, max_length=2000)
    admin_notes: Optional[str] = Field(None, max_length=2000)


class CompleteReskinRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    new_asset_name: str = Field(..., min_length=1, max_length=200)
    completion_photos: list[str] = Field(..., min_length=1, description="Photo URLs")
    notes: Optional[str] = Field(None, max_length=2000)


class CancelReskinRequest(BaseModel):
    reason: str
    order_action: ReskinOrderAction = ReskinOrderAction.CONTINUE


class ReskinResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    order_item_id: UUID
    original_asset_id: UUID
    target_brand: str
    client_notes: Optional[str] = None
    status: ReskinStatus
    new_asset_id: Optional[UUID] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    completion_photos: list[str] = Field(default_factory=list)
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None


class ProcessedReskinResponse(BaseModel):
    reskin: ReskinResponse
    line_item: LineItemResponse
