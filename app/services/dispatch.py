from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.ids import generate_external_delivery_id
from app.core.timeutils import parse_iso_datetime
from app.models.delivery import DeliveryRecord, DispatchAttempt
from app.models.order_event import OrderEvent
from app.models.scheduled_order import ScheduledOrder
from app.providers.doordash.client import DoordashClient
from app.providers.doordash.types import DeliveryItem, DeliveryRequest, DeliveryResult
from app.services.delivery_status import CLOSED_ORDER_STATUSES, OrderStatus
from app.services.gratuity import GratuitySplit, calculate_gratuity_split
from app.services.redaction import redact_payload


log = logging.getLogger(__name__)

DEFAULT_PICKUP_INSTRUCTIONS = "Brew & Board order"
DEFAULT_CONTACT_NAME = "Customer"

# Delivery records in these states do not block a new dispatch for the same order.
# "dispatching" marks a create call in flight and does block.
INACTIVE_DELIVERY_STATUSES = ("pending", "cancelled", "returned")


@dataclass(frozen=True)
class DispatchOrderRequest:
    order_id: str
    vendor_name: str
    vendor_address: str
    vendor_phone: str
    customer_name: str
    customer_address: str
    customer_phone: str
    order_total: int  # cents
    customer_tip: int  # cents
    pickup_instructions: str | None = None
    dropoff_instructions: str | None = None
    contactless_dropoff: bool = True
    scheduled_pickup_time: str | None = None
    scheduled_dropoff_time: str | None = None
    items: tuple[DeliveryItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    external_delivery_id: str
    gratuity_split: GratuitySplit
    delivery_request: DeliveryRequest | None = None
    provider_response: DeliveryResult | None = None
    error: str | None = None
    fallback_triggered: bool = False


def split_customer_name(name: str | None) -> tuple[str, str | None]:
    parts = (name or "").split()
    if not parts:
        return DEFAULT_CONTACT_NAME, None
    return parts[0], " ".join(parts[1:]) or None


class DispatchOrchestrator:
    def __init__(self, client: DoordashClient):
        self.client = client

    def build_delivery_request(
        self,
        request: DispatchOrderRequest,
        *,
        external_delivery_id: str,
        gratuity_split: GratuitySplit,
    ) -> DeliveryRequest:
        given_name, family_name = split_customer_name(request.customer_name)
        return DeliveryRequest(
            external_delivery_id=external_delivery_id,
            pickup_address=request.vendor_address,
            pickup_business_name=request.vendor_name,
            pickup_phone_number=request.vendor_phone,
            pickup_instructions=request.pickup_instructions or DEFAULT_PICKUP_INSTRUCTIONS,
            dropoff_address=request.customer_address,
            dropoff_phone_number=request.customer_phone,
            dropoff_contact_given_name=given_name,
            dropoff_contact_family_name=family_name,
            dropoff_instructions=request.dropoff_instructions,
            contactless_dropoff=request.contactless_dropoff,
            pickup_time=request.scheduled_pickup_time,
            dropoff_time=request.scheduled_dropoff_time,
            order_value=request.order_total,
            # only the courier's share goes to the provider
            tip=gratuity_split.driver_tip,
            items=request.items,
        )

    async def dispatch(
        self,
        request: DispatchOrderRequest,
        *,
        external_delivery_id: str | None = None,
    ) -> DispatchResult:
        """
        Request a courier for one order.

        The external delivery id is minted once per logical dispatch and reused
        by every transport retry. On failure `fallback_triggered` tells the
        caller to hand the order to manual fulfillment.
        """
        external_id = external_delivery_id or generate_external_delivery_id()
        split = calculate_gratuity_split(request.customer_tip)
        delivery_request = self.build_delivery_request(request, external_delivery_id=external_id, gratuity_split=split)

        result = await self.client.create_delivery(delivery_request)

        if result.success:
            return DispatchResult(
                success=True,
                external_delivery_id=external_id,
                gratuity_split=split,
                delivery_request=delivery_request,
                provider_response=result,
            )

        log.warning("dispatch failed for order %s (%s), triggering fallback: %s", request.order_id, external_id, result.error)
        return DispatchResult(
            success=False,
            external_delivery_id=external_id,
            gratuity_split=split,
            delivery_request=delivery_request,
            provider_response=result,
            error=result.error,
            fallback_triggered=True,
        )


# persistence flow

@dataclass(frozen=True)
class OrderDispatchOutcome:
    order_id: str
    dispatched: bool
    external_delivery_id: str | None = None
    error: str | None = None
    error_code: str | None = None  # order_not_found/order_closed/already_dispatched/not_configured/provider_failed
    result: DispatchResult | None = None


def to_cents(amount: Decimal | str | int | float | None) -> int:
    if amount is None:
        return 0
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def order_to_dispatch_request(order: ScheduledOrder) -> DispatchOrderRequest:
    items = tuple(
        DeliveryItem(
            name=str(item.get("name") or "Item"),
            quantity=int(item.get("quantity") or 1),
            price=to_cents(item["price"]) if item.get("price") is not None else None,
        )
        for item in (order.items or [])
    )
    return DispatchOrderRequest(
        order_id=order.id,
        vendor_name=order.vendor_name or "Brew & Board Partner",
        vendor_address=order.vendor_address or "",
        vendor_phone=order.vendor_phone or "",
        pickup_instructions="Brew & Board order - please verify all items",
        customer_name=order.contact_name or DEFAULT_CONTACT_NAME,
        customer_address=order.delivery_address,
        customer_phone=order.contact_phone or "",
        dropoff_instructions=order.delivery_instructions or "Leave at front desk",
        contactless_dropoff=True,
        order_total=to_cents(order.total),
        customer_tip=to_cents(order.gratuity),
        items=items,
    )


async def dispatch_scheduled_order(
    db: AsyncSession,
    order_id: str,
    orchestrator: DispatchOrchestrator,
    *,
    changed_by: str = "doordash_auto_dispatch",
) -> OrderDispatchOutcome:
    """
    Dispatch a stored order and record the outcome.

    The delivery record is committed as "dispatching" before the provider call;
    the commit releases the order row lock for the duration of the call. The
    order is re-read afterwards since a cancel may have landed meanwhile. The outcome is flushed, not committed: "created"
    on success, "pending" when the create failed and needs manual dispatch.
    """
    order = (await db.execute(
        select(ScheduledOrder).where(ScheduledOrder.id == order_id).with_for_update()
    )).scalar_one_or_none()
    if not order:
        return OrderDispatchOutcome(order_id=order_id, dispatched=False, error="Order not found", error_code="order_not_found")

    if order.status in {s.value for s in CLOSED_ORDER_STATUSES}:
        return OrderDispatchOutcome(
            order_id=order_id,
            dispatched=False,
            error=f"Cannot dispatch order with status: {order.status}",
            error_code="order_closed",
        )

    active = (await db.execute(
        select(DeliveryRecord).where(
            DeliveryRecord.scheduled_order_id == order_id,
            DeliveryRecord.status.not_in(INACTIVE_DELIVERY_STATUSES),
        )
    )).scalars().first()
    if active:
        return OrderDispatchOutcome(
            order_id=order_id,
            dispatched=False,
            external_delivery_id=active.external_delivery_id,
            error="Order already has an active delivery",
            error_code="already_dispatched",
        )

    if not orchestrator.client.is_configured():
        return OrderDispatchOutcome(
            order_id=order_id,
            dispatched=False,
            error="DoorDash integration not configured",
            error_code="not_configured",
        )

    request = order_to_dispatch_request(order)
    external_id = generate_external_delivery_id()
    split = calculate_gratuity_split(request.customer_tip)
    given_name, family_name = split_customer_name(request.customer_name)

    record = DeliveryRecord(
        external_delivery_id=external_id,
        scheduled_order_id=order.id,
        status="dispatching",
        pickup_address=request.vendor_address,
        pickup_business_name=request.vendor_name,
        pickup_phone_number=request.vendor_phone,
        dropoff_address=request.customer_address,
        dropoff_phone_number=request.customer_phone or None,
        dropoff_contact_given_name=given_name,
        dropoff_contact_family_name=family_name,
        tip_cents=split.driver_tip,
        order_value_cents=request.order_total,
    )
    db.add(record)
    await db.commit()

    try:
        result = await orchestrator.dispatch(request, external_delivery_id=external_id)
    except Exception:
        record.status = "pending"
        record.last_error = "Dispatch interrupted"
        await db.commit()
        raise

    await db.refresh(order, with_for_update=True)
    await db.refresh(record)
    provider = result.provider_response

    db.add(DispatchAttempt(
        delivery_id=record.id,
        operation="create",
        status="success" if result.success else "failed",
        request=redact_payload(result.delivery_request.to_payload()) if result.delivery_request else {},
        response={
            "provider_delivery_id": provider.provider_delivery_id,
            "fee": provider.fee,
            "estimated_pickup_time": provider.estimated_pickup_time,
            "estimated_dropoff_time": provider.estimated_dropoff_time,
        } if provider and provider.success else {},
        status_code=provider.status_code if provider else None,
        error_code=provider.error_kind if provider else None,
        error_message=result.error,
    ))

    if result.success and provider:
        # a webhook or a cancel may already have moved it on
        if record.status == "dispatching":
            record.status = "created"
        record.provider_delivery_id = provider.provider_delivery_id
        record.fee_cents = provider.fee
        record.pickup_time = parse_iso_datetime(provider.estimated_pickup_time)
        record.dropoff_time = parse_iso_datetime(provider.estimated_dropoff_time)
        record.last_error = None

        if order.status == OrderStatus.SCHEDULED.value:
            order.status = OrderStatus.CONFIRMED.value
        order.internal_gratuity = Decimal(split.internal_tip) / 100
        order.partner_gratuity = Decimal(split.driver_tip) / 100
        order.fulfillment_channel = "doordash"
        order.fulfillment_ref = external_id

        if order.status == OrderStatus.CANCELLED.value:
            log.warning("order %s was cancelled while %s was being dispatched", order.id, external_id)
            db.add(OrderEvent(
                order_id=order.id,
                status=order.status,
                note=f"DoorDash delivery {external_id} was created after the order was cancelled. Cancel it in DoorDash.",
                changed_by=changed_by,
            ))

        db.add(OrderEvent(
            order_id=order.id,
            status=order.status,
            note=(
                f"DoorDash delivery dispatched: {external_id}. "
                f"Driver tip: {_dollars(split.driver_tip)}, Brew & Board keeps: {_dollars(split.internal_tip)}"
            ),
            changed_by=changed_by,
        ))
        await db.flush()
        log.info("dispatched order %s as %s", order.id, external_id)
        return OrderDispatchOutcome(order_id=order.id, dispatched=True, external_delivery_id=external_id, result=result)

    if record.status == "dispatching":
        record.status = "pending"
    record.last_error = result.error
    db.add(OrderEvent(
        order_id=order.id,
        status=order.status,
        note=f"DoorDash auto-dispatch failed: {result.error}. Manual dispatch required.",
        changed_by=changed_by,
    ))
    await db.flush()
    return OrderDispatchOutcome(
        order_id=order.id,
        dispatched=False,
        external_delivery_id=external_id,
        error=result.error,
        error_code="provider_failed",
        result=result,
    )
