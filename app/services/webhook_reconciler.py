from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.timeutils import as_utc
from app.models.delivery import DeliveryRecord
from app.models.order_event import OrderEvent
from app.models.scheduled_order import ScheduledOrder
from app.schemas.doordash import WebhookEventIn
from app.services.delivery_status import ORDER_STATUS_MESSAGES, OrderStatus, map_provider_status
from app.services.notifications import OrderNotifier, OrderStatusNotification, notify_safely


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    status: str  # processed/delivery_not_found/stale_event
    external_delivery_id: str
    order_id: str | None = None
    order_status: OrderStatus | None = None
    notified: bool = False


def apply_event_fields(record: DeliveryRecord, event: WebhookEventIn) -> None:
    """Copy only the fields the event actually carries onto the delivery record."""
    if event.delivery_status:
        record.status = event.delivery_status

    if event.dasher:
        if event.dasher.first_name is not None:
            record.dasher_name = event.dasher.first_name
        if event.dasher.phone_number is not None:
            record.dasher_phone_number = event.dasher.phone_number
        if event.dasher.vehicle is not None:
            record.dasher_vehicle = event.dasher.vehicle

    if event.tracking_url:
        record.tracking_url = event.tracking_url
    if event.estimated_pickup_time:
        record.pickup_time = event.estimated_pickup_time
    if event.estimated_dropoff_time:
        record.dropoff_time = event.estimated_dropoff_time
    if event.actual_pickup_time:
        record.actual_pickup_time = event.actual_pickup_time
    if event.actual_dropoff_time:
        record.actual_dropoff_time = event.actual_dropoff_time
    if event.cancellation_reason:
        record.cancellation_reason = event.cancellation_reason


def _is_stale(record: DeliveryRecord, event: WebhookEventIn) -> bool:
    if event.created_at is None or record.last_event_at is None:
        return False
    return as_utc(event.created_at) < as_utc(record.last_event_at)


class WebhookReconciler:
    """
    Folds DoorDash delivery callbacks into our delivery records and orders.

    The order status is a projection of the provider status. State is committed
    before the customer notification goes out, and a failed notification never
    changes the outcome.
    """

    def __init__(self, notifier: OrderNotifier | None):
        self.notifier = notifier

    async def process(self, db: AsyncSession, event: WebhookEventIn) -> ReconcileOutcome:
        record = (await db.execute(
            select(DeliveryRecord)
            .where(DeliveryRecord.external_delivery_id == event.external_delivery_id)
            .with_for_update()
        )).scalar_one_or_none()

        if not record:
            log.warning("webhook for unknown delivery %s (%s)", event.external_delivery_id, event.event_type)
            return ReconcileOutcome(status="delivery_not_found", external_delivery_id=event.external_delivery_id)

        if _is_stale(record, event):
            log.info(
                "ignoring stale webhook %s for %s (event %s, last applied %s)",
                event.event_type, record.external_delivery_id, event.created_at, record.last_event_at,
            )
            await db.rollback()
            return ReconcileOutcome(status="stale_event", external_delivery_id=event.external_delivery_id)

        apply_event_fields(record, event)
        if event.created_at is not None:
            record.last_event_at = as_utc(event.created_at)

        order: ScheduledOrder | None = None
        order_status: OrderStatus | None = None
        if record.scheduled_order_id:
            order = (await db.execute(
                select(ScheduledOrder).where(ScheduledOrder.id == record.scheduled_order_id)
            )).scalar_one_or_none()

        if order:
            order_status = map_provider_status(event.delivery_status)
            previous = order.status
            order.status = order_status.value
            if previous != order.status:
                db.add(OrderEvent(
                    order_id=order.id,
                    status=order.status,
                    note=f"DoorDash {event.event_type}: {event.delivery_status or 'no status'}",
                    changed_by="doordash_webhook",
                ))

        await db.commit()

        notified = False
        if order and order_status and order.contact_email and self.notifier is not None:
            notification = OrderStatusNotification(
                order_id=order.id,
                customer_name=order.contact_name or "Customer",
                customer_email=order.contact_email,
                status=order_status.value,
                status_message=ORDER_STATUS_MESSAGES.get(order_status, "Order status updated."),
                tracking_url=event.tracking_url,
                estimated_arrival=event.estimated_dropoff_time.isoformat() if event.estimated_dropoff_time else None,
                driver_name=event.dasher.first_name if event.dasher else None,
            )
            notified = await notify_safely(
                self.notifier.order_status_changed(notification),
                what="order status email",
                order_id=order.id,
            )

        return ReconcileOutcome(
            status="processed",
            external_delivery_id=record.external_delivery_id,
            order_id=order.id if order else None,
            order_status=order_status,
            notified=notified,
        )
