from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Protocol

log = logging.getLogger(__name__)

SEND_EMAIL_TASK = "worker.tasks.send_order_email"


@dataclass(frozen=True)
class OrderStatusNotification:
    order_id: str
    customer_name: str
    customer_email: str
    status: str
    status_message: str
    tracking_url: str | None = None
    estimated_arrival: str | None = None
    driver_name: str | None = None


@dataclass(frozen=True)
class OrderCancellationNotification:
    order_id: str
    customer_name: str
    customer_email: str
    reason: str
    refund_amount: str | None = None  # dollars, "12.50"
    refund_status: str = "not_applicable"


class OrderNotifier(Protocol):
    async def order_status_changed(self, notification: OrderStatusNotification) -> None:
        ...

    async def order_cancelled(self, notification: OrderCancellationNotification) -> None:
        ...


class CeleryOrderNotifier:
    """Hands customer emails to the worker so slow mail APIs never block a request."""

    def __init__(self, celery_app=None):
        self._celery = celery_app

    def _app(self):
        if self._celery is None:
            from worker.celery_app import celery
            self._celery = celery
        return self._celery

    async def _enqueue(self, kind: str, payload: dict) -> None:
        # send_task talks to the broker synchronously
        await asyncio.to_thread(
            self._app().send_task, SEND_EMAIL_TASK, kwargs={"kind": kind, "payload": payload}, queue="notify"
        )

    async def order_status_changed(self, notification: OrderStatusNotification) -> None:
        await self._enqueue("order_status", asdict(notification))

    async def order_cancelled(self, notification: OrderCancellationNotification) -> None:
        await self._enqueue("order_cancelled", asdict(notification))


async def notify_safely(coro, *, what: str, order_id: str) -> bool:
    """Await a notification, logging instead of raising. Notifications never fail the caller."""
    try:
        await coro
    except Exception:
        log.exception("notification failed: %s for order %s", what, order_id)
        return False
    return True
