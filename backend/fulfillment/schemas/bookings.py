"""Asset booking schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReserveAssetRequest(BaseModel):
    asset_id: UUID
    order_id: UUID
    quantity: int = Field(..., ge=1)
    event_start: date
    event_end: date
    refurb_days: int = Field(default=0, ge=0)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    asset_id: UUID
    order_id: UUID
    quantity: int
    blocked_from: date
    blocked_until: date = Field(..., description="Exclusive end of the blocked period")
    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    asset_id: UUID
    event_start: date
    event_end: date
    refurb_days: int
    blocked_from: date
    blocked_until: date
    available_quantity: int
