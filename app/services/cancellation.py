from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.timeutils import as_utc, utcnow
from app.models.delivery import DeliveryRecord, DispatchAttempt
from app.models.order_event import OrderEvent
from app.models.payment import Payment
from app.models.scheduled_order import ScheduledOrder
from app.providers.doordash.client import DoordashClient
from app.services.delivery_status import OrderStatus
from app.services.dispatch import to_cents
from app.services.notifications import OrderCancellationNotification, OrderNotifier, notify_safely
from app.services.payments import RefundGateway


log = logging.getLogger(__name__)

FREE_CANCEL_WINDOW_MINUTES = 60
FULL_REFUND_LEAD_MINUTES = 120
PARTIAL_REFUND_LEAD_MINUTES = 60
PARTIAL_REFUND_PERCENT = 50

RefundStatus = Literal["pending", "processed", "failed", "not_applicable"]

# Deliveries in these states have nothing left to cancel at the provider. "pending"
# records are not listed: a create that timed out may still have landed.
FINISHED_DELIVERY_STATUSES = ("cancelled", "returned", "delivered")

REJECTIONS: dict[str, tuple[str, str]] = {
    OrderStatus.CANCELLED.value: ("already_cancelled", "Order already cancelled"),
    OrderStatus.DELIVERED.value: ("already_delivered", "Cannot cancel delivered order"),
    OrderStatus.OUT_FOR_DELIVERY.value: ("out_for_delivery", "Cannot cancel order already out for delivery"),
}


@dataclass(frozen=True)
class CancellationDecision:
    refund_percent: int
    reason: str


@dataclass(frozen=True)
class CancellationRequest:
    order_id: str
    reason: str
    requested_by: str
    refund_requested: bool = True


@dataclass(frozen=True)
class CancellationResult:
    success: bool
    order_id: str
    refund_id: str | None = None
    refund_amount_cents: int | None = None
    refund_status: RefundStatus = "not_applicable"
    provider_cancelled: bool = False
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class CancellationPreview:
    can_cancel: bool
    refund_percent: int
    refund_amount_cents: int
    reason: str
    order_status: str


def get_refund_policy(
    order_created_at: datetime,
    scheduled_for: datetime,
    now: datetime | None = None,
) -> CancellationDecision:
    """
    Refund percentage for cancelling now.

    Cancelling within an hour of ordering is always free; otherwise the
    refund depends on how far away the scheduled delivery is.
    """
    now = as_utc(now or utcnow())
    minutes_since_order = (now - as_utc(order_created_at)).total_seconds() / 60
    minutes_until_delivery = (as_utc(scheduled_for) - now).total_seconds() / 60

    if minutes_since_order <= FREE_CANCEL_WINDOW_MINUTES:
        return CancellationDecision(100, "Cancelled within 1 hour of order")
    if minutes_until_delivery > FULL_REFUND_LEAD_MINUTES:
        return CancellationDecision(100, "Cancelled more than 2 hours before delivery")
    if minutes_until_delivery > PARTIAL_REFUND_LEAD_MINUTES:
        return CancellationDecision(PARTIAL_REFUND_PERCENT, "Cancelled 1-2 hours before delivery - 50% refund")
    return CancellationDecision(0, "Cancelled less than 1 hour before delivery - no refund")


def refund_cents(total_cents: int, refund_percent: int) -> int:
    return int((Decimal(total_cents) * refund_percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def check_cancellable(order: ScheduledOrder) -> tuple[str, str] | None:
    """Returns (error_code, reason) when the order can no longer be cancelled."""
    return REJECTIONS.get(order.status)


async def _load_order(db: AsyncSession, order_id: str, *, for_update: bool = False) -> ScheduledOrder | None:
    stmt = select(ScheduledOrder).where(ScheduledOrder.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_cancellation_preview(db: AsyncSession, order_id: str, now: datetime | None = None) -> CancellationPreview:
    order = await _load_order(db, order_id)
    if not order:
        return CancellationPreview(False, 0, 0, "Order not found", "unknown")

    if check_cancellable(order) is not None:
        return CancellationPreview(False, 0, 0, f"Cannot cancel order with status: {order.status}", order.status)

    decision = get_refund_policy(order.created_at or utcnow(), order.scheduled_for, now)
    return CancellationPreview(
        can_cancel=True,
        refund_percent=decision.refund_percent,
        refund_amount_cents=refund_cents(to_cents(order.total), decision.refund_percent),
        reason=decision.reason,
        order_status=order.status,
    )


class CancellationService:
    """
    Cancels an order: provider delivery first, then the refund, then the order itself.

    Provider cancellation, refund and notification are each best-effort; none
    of them can stop the order from being marked cancelled.
    """

    def __init__(
        self,
        *,
        client: DoordashClient | None,
        refunds: RefundGateway | None,
        notifier: OrderNotifier | None,
    ):
        self.client = client
        self.refunds = refunds
        self.notifier = notifier

    async def _cancel_provider_delivery(self, db: AsyncSession, order_id: str, reason: str) -> bool:
        if self.client is None or not self.client.is_configured():
            return False

        delivery = (await db.execute(
            select(DeliveryRecord)
            .where(
                DeliveryRecord.scheduled_order_id == order_id,
                DeliveryRecord.status.not_in(FINISHED_DELIVERY_STATUSES),
            )
            .order_by(DeliveryRecord.created_at.desc())
        )).scalars().first()
        if not delivery:
            return False

        result = await self.client.cancel_delivery(delivery.external_delivery_id)
        db.add(DispatchAttempt(
            delivery_id=delivery.id,
            operation="cancel",
            status="success" if result.success else "failed",
            request={"external_delivery_id": delivery.external_delivery_id},
            response=result.data or {},
            status_code=result.status_code,
            error_code=result.error_kind,
            error_message=result.error,
        ))

        if result.status_code == 404:
            # the provider never created it, so there is nothing to cancel
            log.info("doordash has no delivery %s, nothing to cancel", delivery.external_delivery_id)
            delivery.status = "cancelled"
            delivery.cancellation_reason = reason
            return False

        if not result.success:
            log.warning("failed to cancel doordash delivery %s: %s", delivery.external_delivery_id, result.error)
            return False

        delivery.status = "cancelled"
        delivery.cancellation_reason = reason
        log.info("doordash delivery cancelled: %s", delivery.external_delivery_id)
        return True

    async def _refund(
        self,
        db: AsyncSession,
        order: ScheduledOrder,
        request: CancellationRequest,
        decision: CancellationDecision,
    ) -> tuple[RefundStatus, str | None, int | None]:
        payment = (await db.execute(
            select(Payment).where(Payment.order_id == order.id, Payment.status == "completed")
        )).scalars().first()
        if not payment or not payment.provider_payment_id:
            return "not_applicable", None, None

        if decision.refund_percent <= 0:
            log.info("no refund issued for order %s: %s", order.id, decision.reason)
            return "not_applicable", None, None

        amount = refund_cents(to_cents(payment.amount), decision.refund_percent)

        if self.refunds is None:
            log.warning("refund gateway not configured; order %s refund of %d cents left pending", order.id, amount)
            return "pending", None, amount

        outcome = await self.refunds.refund(
            payment_intent_id=payment.provider_payment_id,
            amount_cents=amount,
            metadata={"order_id": order.id, "reason": request.reason, "policy": decision.reason},
        )
        if not outcome.ok:
            log.error("refund failed for order %s: %s", order.id, outcome.error)
            return "failed", None, amount

        payment.status = "refunded"
        payment.refund_id = outcome.refund_id
        payment.refund_amount_cents = amount
        log.info("refund processed for order %s: %d cents (%d%%)", order.id, amount, decision.refund_percent)
        return ("processed" if outcome.status == "succeeded" else "pending"), outcome.refund_id, amount

    async def cancel_order(
        self,
        db: AsyncSession,
        request: CancellationRequest,
        now: datetime | None = None,
    ) -> CancellationResult:
        log.info("cancellation requested for order %s by %s: %s", request.order_id, request.requested_by, request.reason)

        order = await _load_order(db, request.order_id, for_update=True)
        if not order:
            return CancellationResult(False, request.order_id, error="Order not found", error_code="order_not_found")

        rejection = check_cancellable(order)
        if rejection is not None:
            code, reason = rejection
            return CancellationResult(False, order.id, error=reason, error_code=code)

        provider_cancelled = await self._cancel_provider_delivery(db, order.id, request.reason)

        refund_status: RefundStatus = "not_applicable"
        refund_id: str | None = None
        refund_amount: int | None = None
        if request.refund_requested:
            decision = get_refund_policy(order.created_at or utcnow(), order.scheduled_for, now)
            refund_status, refund_id, refund_amount = await self._refund(db, order, request, decision)

        order.status = OrderStatus.CANCELLED.value

        note = f"Cancelled by {request.requested_by}: {request.reason}"
        if refund_amount:
            note += f". Refund: ${refund_amount / 100:.2f} ({refund_status})"
        db.add(OrderEvent(order_id=order.id, status=order.status, note=note, changed_by=request.requested_by))

        await db.commit()

        if self.notifier is not None and order.contact_email:
            await notify_safely(
                self.notifier.order_cancelled(OrderCancellationNotification(
                    order_id=order.id,
                    customer_name=order.contact_name or "Customer",
                    customer_email=order.contact_email,
                    reason=request.reason,
                    refund_amount=f"{refund_amount / 100:.2f}" if refund_amount else None,
                    # customers see a failed refund as pending; ops reconcile it manually
                    refund_status="pending" if refund_status == "failed" else refund_status,
                )),
                what="cancellation email",
                order_id=order.id,
            )

        log.info(
            "order %s cancelled (provider_cancelled=%s refund=%s %s)",
            order.id, provider_cancelled, refund_amount, refund_status,
        )
        return CancellationResult(
            success=True,
            order_id=order.id,
            refund_id=refund_id,
            refund_amount_cents=refund_amount,
            refund_status=refund_status,
            provider_cancelled=provider_cancelled,
        )
