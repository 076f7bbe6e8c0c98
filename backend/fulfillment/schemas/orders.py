"""
Order Pydantic schemas for API request/response validation.

Covers order creation, status transitions, cancellation, return to
logistics, status history and the operator field updates.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fulfillment.core.exceptions import MIN_REASON_LENGTH
from fulfillment.services.orders.enums import CancellationReason, OrderStatus, TripType


class OrderItemRequest(BaseModel):
    asset_id: UUID = Field(..., description="Asset to rent")
    quantity: int = Field(..., ge=1, description="Units of the asset")
    refurb_days: int = Field(
        default=0,
        ge=0,
        description="Refurbishment days needed before the event",
    )


class OrderCreateRequest(BaseModel):
    """Request body for creating a draft order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    company_id: UUID
    items: list[OrderItemRequest] = Field(..., min_length=1)
    event_start_date: Optional[date] = None
    event_end_date: Optional[date] = None
    venue_name: Optional[str] = Field(None, max_length=200)
    venue_city: Optional[str] = Field(None, max_length=100)
    venue_emirate: Optional[str] = Field(None, max_length=100)
    venue_address: Optional[str] = None
    calculated_volume: Decimal = Field(default=Decimal("0"), ge=0, description="m3")
    calculated_weight: Decimal = Field(default=Decimal("0"), ge=0, description="kg")
    transport_trip_type: TripType = TripType.ROUND_TRIP
    transport_vehicle_type: str = Field(default="STANDARD", min_length=1, max_length=50)

    @model_validator(mode="after")
    def validate_event_dates(self) -> "OrderCreateRequest":
        if (
            self.event_start_date is not None
            and self.event_end_date is not None
            and self.event_end_date <= self.event_start_date
        ):
            raise ValueError("event_end_date must be after event_start_date")
        return self


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    asset_id: UUID
    quantity: int
    refurb_days: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str = Field(..., description="Human-readable order code")
    company_id: UUID
    status: OrderStatus
    event_start_date: Optional[date] = None
    event_end_date: Optional[date] = None
    venue_name: Optional[str] = None
    venue_city: Optional[str] = None
    venue_emirate: Optional[str] = None
    delivery_window_start: Optional[datetime] = None
    delivery_window_end: Optional[datetime] = None
    pickup_window_start: Optional[datetime] = None
    pickup_window_end: Optional[datetime] = None
    job_number: Optional[str] = None
    calculated_volume: Decimal
    calculated_weight: Decimal
    transport_trip_type: TripType
    transport_vehicle_type: str
    vehicle_changed: bool = False
    vehicle_change_reason: Optional[str] = None
    margin_override_percent: Optional[Decimal] = None
    margin_override_reason: Optional[str] = None
    cancellation_reason: Optional[CancellationReason] = None
    cancellation_notes: Optional[str] = None
    items: list[OrderItemResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransitionRequest(BaseModel):
    """Request to move an order to another status."""

    requested_status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("requested_status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class CancelOrderRequest(BaseModel):
    reason: CancellationReason
    notes: str = Field(..., min_length=1, max_length=2000)


class ReturnToLogisticsRequest(BaseModel):
    reason: str = Field(..., description=f"At least {MIN_REASON_LENGTH} characters")


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    status: OrderStatus
    timestamp: datetime
    updated_by: str
    notes: Optional[str] = None


class JobNumberUpdate(BaseModel):
    job_number: Optional[str] = Field(None, max_length=50)


class TimeWindowsUpdate(BaseModel):
    delivery_window_start: Optional[datetime] = None
    delivery_window_end: Optional[datetime] = None
    pickup_window_start: Optional[datetime] = None
    pickup_window_end: Optional[datetime] = None


class VehicleUpdate(BaseModel):
    vehicle_type: str = Field(..., min_length=1, max_length=50)
    reason: str


class TripTypeUpdate(BaseModel):
    trip_type: TripType
