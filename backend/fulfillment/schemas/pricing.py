"""Pricing breakdown and quote approval schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from fulfillment.services.pricing.engine import OrderPricing


class BaseOperationsResponse(BaseModel):
    volume: str
    rate: str
    total: str


class TransportResponse(BaseModel):
    emirate: Optional[str] = None
    city: Optional[str] = None
    trip_type: str
    vehicle_type: str
    final_rate: str
    vehicle_changed: bool = False
    vehicle_change_reason: Optional[str] = None


class LineItemTotalsResponse(BaseModel):
    catalog_total: str
    custom_total: str


class MarginResponse(BaseModel):
    percent: str
    amount: Optional[str] = None
    overridden: bool = False
    override_reason: Optional[str] = None


class OrderPricingResponse(BaseModel):
    """
    Price breakdown of an order.

    Amounts are decimal strings rounded to 2 places. ``configuration_gaps``
    lists missing rate configuration when the breakdown was computed in
    lenient mode; totals are null in that case.
    """

    base_operations: Optional[BaseOperationsResponse] = None
    transport: Optional[TransportResponse] = None
    line_items: LineItemTotalsResponse
    margin: MarginResponse
    logistics_sub_total: Optional[str] = None
    client_total: Optional[str] = None
    configuration_gaps: list[str] = Field(default_factory=list)
    calculated_at: datetime

    @classmethod
    def from_pricing(cls, pricing: OrderPricing) -> "OrderPricingResponse":
        return cls.model_validate(pricing.to_dict())


class ApproveQuoteRequest(BaseModel):
    margin_override_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    margin_override_reason: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def strip_reason(self) -> "ApproveQuoteRequest":
        if self.margin_override_reason is not None:
            self.margin_override_reason = self.margin_override_reason.strip() or None
        return self
