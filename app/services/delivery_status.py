from enum import Enum


class ProviderDeliveryStatus(str, Enum):
    """DoorDash Drive delivery_status vocabulary."""

    CREATED = "created"
    CONFIRMED = "confirmed"
    ENROUTE_TO_PICKUP = "enroute_to_pickup"
    ARRIVED_AT_PICKUP = "arrived_at_pickup"
    PICKED_UP = "picked_up"
    ENROUTE_TO_DROPOFF = "enroute_to_dropoff"
    ARRIVED_AT_DROPOFF = "arrived_at_dropoff"
    DELIVERED = "delivered"
    ENROUTE_TO_RETURN = "enroute_to_return"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    PICKED_UP = "picked_up"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Every provider status must appear here; test_delivery_status checks it.
PROVIDER_TO_ORDER_STATUS: dict[ProviderDeliveryStatus, OrderStatus] = {
    ProviderDeliveryStatus.CREATED: OrderStatus.CONFIRMED,
    ProviderDeliveryStatus.CONFIRMED: OrderStatus.CONFIRMED,
    ProviderDeliveryStatus.ENROUTE_TO_PICKUP: OrderStatus.PREPARING,
    ProviderDeliveryStatus.ARRIVED_AT_PICKUP: OrderStatus.PREPARING,
    ProviderDeliveryStatus.PICKED_UP: OrderStatus.PICKED_UP,
    ProviderDeliveryStatus.ENROUTE_TO_DROPOFF: OrderStatus.OUT_FOR_DELIVERY,
    ProviderDeliveryStatus.ARRIVED_AT_DROPOFF: OrderStatus.OUT_FOR_DELIVERY,
    ProviderDeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
    ProviderDeliveryStatus.ENROUTE_TO_RETURN: OrderStatus.CONFIRMED,
    ProviderDeliveryStatus.RETURNED: OrderStatus.CANCELLED,
    ProviderDeliveryStatus.CANCELLED: OrderStatus.CANCELLED,
}

ORDER_STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.SCHEDULED: "Your order has been scheduled.",
    OrderStatus.CONFIRMED: "Your order has been confirmed!",
    OrderStatus.PREPARING: "Your order is being prepared.",
    OrderStatus.PICKED_UP: "Your order has been picked up by the driver.",
    OrderStatus.OUT_FOR_DELIVERY: "Your order is on its way!",
    OrderStatus.DELIVERED: "Your order has been delivered!",
    OrderStatus.CANCELLED: "Your order has been cancelled.",
}

# Orders in these states can no longer be cancelled or re-dispatched
CLOSED_ORDER_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.DELIVERED, OrderStatus.OUT_FOR_DELIVERY})


def parse_provider_status(value: str | None) -> ProviderDeliveryStatus | None:
    if not value:
        return None
    try:
        return ProviderDeliveryStatus(value.strip().lower())
    except ValueError:
        return None


def map_provider_status(value: str | None) -> OrderStatus:
    """Project a provider delivery status onto our order status; unknown or missing -> confirmed."""
    status = parse_provider_status(value)
    if status is None:
        return OrderStatus.CONFIRMED
    return PROVIDER_TO_ORDER_STATUS[status]
