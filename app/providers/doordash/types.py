from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

ErrorKind = Literal["not_configured", "circuit_open", "client_error", "transient"]


@dataclass(frozen=True)
class ProviderResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    status_code: int | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class DeliveryItem:
    name: str
    quantity: int
    price: int | None = None  # cents


@dataclass(frozen=True)
class DeliveryRequest:
    """Body of POST /drive/v2/deliveries. Money is in cents, times are ISO-8601."""

    external_delivery_id: str
    pickup_address: str
    pickup_phone_number: str
    dropoff_address: str
    dropoff_phone_number: str
    dropoff_contact_given_name: str
    pickup_business_name: str | None = None
    pickup_instructions: str | None = None
    dropoff_contact_family_name: str | None = None
    dropoff_instructions: str | None = None
    contactless_dropoff: bool | None = None
    pickup_time: str | None = None
    dropoff_time: str | None = None
    order_value: int | None = None
    tip: int | None = None
    items: tuple[DeliveryItem, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict[str, Any]:
        payload = {k: v for k, v in asdict(self).items() if v is not None and k != "items"}
        if self.items:
            payload["items"] = [
                {k: v for k, v in asdict(item).items() if v is not None}
                for item in self.items
            ]
        return payload


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    external_delivery_id: str
    provider_delivery_id: str | None = None
    estimated_pickup_time: str | None = None
    estimated_dropoff_time: str | None = None
    fee: int | None = None
    status_code: int | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    fallback_triggered: bool = False


@dataclass(frozen=True)
class DeliveryStatusResult:
    success: bool
    status: str | None = None
    dasher_name: str | None = None
    dasher_phone: str | None = None
    tracking_url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DriverLocationResult:
    success: bool
    lat: float | None = None
    lng: float | None = None
    dasher_name: str | None = None
    status: str | None = None
    estimated_dropoff_time: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class QuoteResult:
    success: bool
    external_delivery_id: str
    fee: int | None = None
    currency: str | None = None
    estimated_pickup_time: str | None = None
    estimated_dropoff_time: str | None = None
    error: str | None = None
