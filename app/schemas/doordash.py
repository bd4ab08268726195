from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DasherIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    phone_number: str | None = None
    vehicle: str | None = None


class WebhookEventIn(BaseModel):
    """DoorDash Drive webhook body. Unknown keys are tolerated."""

    model_config = ConfigDict(extra="ignore")

    event_type: str = Field(min_length=1)
    external_delivery_id: str = Field(min_length=1)
    delivery_status: str | None = None
    dasher: DasherIn | None = None
    tracking_url: str | None = None
    estimated_pickup_time: datetime | None = None
    estimated_dropoff_time: datetime | None = None
    actual_pickup_time: datetime | None = None
    actual_dropoff_time: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None


class WebhookAck(BaseModel):
    received: bool = True
    status: Literal["processed", "delivery_not_found", "stale_event"]


class QuoteIn(BaseModel):
    pickup_address: str = Field(min_length=10)
    dropoff_address: str = Field(min_length=10)
    order_value: int | None = Field(default=None, ge=0)  # cents


class QuoteOut(BaseModel):
    external_delivery_id: str
    fee: int | None
    currency: str | None
    estimated_pickup_time: str | None
    estimated_dropoff_time: str | None


class ProviderStatusOut(BaseModel):
    configured: bool
    environment: str
    circuit_breaker: Literal["closed", "open", "half-open"]
    recent_failures: int


class LiveStatusOut(BaseModel):
    status: str | None
    dasher_name: str | None
    dasher_phone: str | None
    tracking_url: str | None


class DeliveryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_delivery_id: str
    provider_delivery_id: str | None
    scheduled_order_id: str | None
    status: str
    dasher_name: str | None
    dasher_vehicle: str | None
    tracking_url: str | None
    tip_cents: int
    order_value_cents: int
    fee_cents: int | None
    pickup_time: datetime | None
    dropoff_time: datetime | None
    actual_pickup_time: datetime | None
    actual_dropoff_time: datetime | None
    cancellation_reason: str | None
    last_error: str | None
    live_status: LiveStatusOut | None = None


class DriverLocationOut(BaseModel):
    lat: float
    lng: float
    dasher_name: str | None
    status: str | None
    estimated_dropoff_time: str | None


class GratuitySplitOut(BaseModel):
    customer_tip: int
    driver_tip: int
    internal_tip: int


class DispatchOut(BaseModel):
    success: bool
    external_delivery_id: str | None
    gratuity_split: GratuitySplitOut | None = None
    provider_delivery_id: str | None = None
    estimated_pickup_time: str | None = None
    estimated_dropoff_time: str | None = None
    fee: int | None = None
    error: str | None = None
    error_code: str | None = None
    fallback_triggered: bool = False
