import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_doordash_client, get_notifier, get_orchestrator
from app.core.config import settings
from app.core.db import get_db
from app.models.delivery import DeliveryRecord
from app.providers.doordash.client import DoordashClient
from app.providers.doordash.types import DeliveryItem
from app.schemas.doordash import (
    DeliveryOut,
    DispatchOut,
    DriverLocationOut,
    GratuitySplitOut,
    LiveStatusOut,
    ProviderStatusOut,
    QuoteIn,
    QuoteOut,
    WebhookAck,
    WebhookEventIn,
)
from app.services.dispatch import DispatchOrchestrator, DispatchOrderRequest, DispatchResult
from app.services.internal_admin import require_internal_admin
from app.services.notifications import OrderNotifier
from app.services.redaction import redact_payload
from app.services.webhook_auth import check_webhook_signature
from app.services.webhook_reconciler import WebhookReconciler


log = logging.getLogger(__name__)
router = APIRouter()

FALLBACK_DELIVERY_FEE_CENTS = 599


def dispatch_out(result: DispatchResult) -> DispatchOut:
    provider = result.provider_response
    return DispatchOut(
        success=result.success,
        external_delivery_id=result.external_delivery_id,
        gratuity_split=GratuitySplitOut(
            customer_tip=result.gratuity_split.customer_tip,
            driver_tip=result.gratuity_split.driver_tip,
            internal_tip=result.gratuity_split.internal_tip,
        ),
        provider_delivery_id=provider.provider_delivery_id if provider else None,
        estimated_pickup_time=provider.estimated_pickup_time if provider else None,
        estimated_dropoff_time=provider.estimated_dropoff_time if provider else None,
        fee=provider.fee if provider else None,
        error=result.error,
        error_code=provider.error_kind if provider else None,
        fallback_triggered=result.fallback_triggered,
    )


@router.post("/doordash/quote", response_model=QuoteOut)
async def delivery_quote(payload: QuoteIn, client: DoordashClient = Depends(get_doordash_client)) -> QuoteOut:
    if not client.is_configured():
        raise HTTPException(
            status_code=503,
            detail={"error": "DoorDash integration not configured", "fallback_fee": FALLBACK_DELIVERY_FEE_CENTS},
        )

    quote = await client.get_delivery_quote(payload.pickup_address, payload.dropoff_address, payload.order_value)
    if not quote.success:
        raise HTTPException(status_code=400, detail={"error": quote.error, "fallback_fee": FALLBACK_DELIVERY_FEE_CENTS})

    log.info("delivery quote %s: fee=%s", quote.external_delivery_id, quote.fee)
    return QuoteOut(
        external_delivery_id=quote.external_delivery_id,
        fee=quote.fee,
        currency=quote.currency,
        estimated_pickup_time=quote.estimated_pickup_time,
        estimated_dropoff_time=quote.estimated_dropoff_time,
    )


@router.get("/doordash/status", response_model=ProviderStatusOut, dependencies=[Depends(require_internal_admin)])
async def provider_status(client: DoordashClient = Depends(get_doordash_client)) -> ProviderStatusOut:
    return ProviderStatusOut(**client.get_status())


@router.get("/doordash/deliveries/{external_delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    external_delivery_id: str,
    client: DoordashClient = Depends(get_doordash_client),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    record = (await db.execute(
        select(DeliveryRecord).where(DeliveryRecord.external_delivery_id == external_delivery_id)
    )).scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=404, detail="Delivery not found")

    out = DeliveryOut.model_validate(record)
    if client.is_configured():
        live = await client.get_delivery_status(external_delivery_id)
        if live.success:
            out.live_status = LiveStatusOut(
                status=live.status,
                dasher_name=live.dasher_name,
                dasher_phone=live.dasher_phone,
                tracking_url=live.tracking_url,
            )
    return out


@router.get("/doordash/deliveries/{external_delivery_id}/location", response_model=DriverLocationOut)
async def driver_location(
    external_delivery_id: str,
    client: DoordashClient = Depends(get_doordash_client),
) -> DriverLocationOut:
    location = await client.get_driver_location(external_delivery_id)
    if not location.success:
        raise HTTPException(status_code=400, detail=location.error)
    return DriverLocationOut(
        lat=location.lat,
        lng=location.lng,
        dasher_name=location.dasher_name,
        status=location.status,
        estimated_dropoff_time=location.estimated_dropoff_time,
    )


@router.post("/doordash/webhook", response_model=WebhookAck)
async def doordash_webhook(
    request: Request,
    x_doordash_signature: str | None = Header(default=None),
    x_doordash_timestamp: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    notifier: OrderNotifier = Depends(get_notifier),
) -> WebhookAck:
    raw_body = await request.body()

    check = check_webhook_signature(raw_body, x_doordash_signature, x_doordash_timestamp, settings)
    if check in ("missing", "invalid"):
        log.warning("rejected doordash webhook: signature %s", check)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = WebhookEventIn.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError):
        log.warning("invalid doordash webhook payload: %s", redact_payload(_safe_json(raw_body)))
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    log.info(
        "doordash event %s for %s (status=%s)",
        event.event_type, event.external_delivery_id, event.delivery_status,
    )
    outcome = await WebhookReconciler(notifier).process(db, event)
    return WebhookAck(status=outcome.status)


def _safe_json(raw_body: bytes):
    try:
        return json.loads(raw_body)
    except ValueError:
        return {"raw_length": len(raw_body)}


@router.post("/doordash/test-dispatch", response_model=DispatchOut, dependencies=[Depends(require_internal_admin)])
async def test_dispatch(
    client: DoordashClient = Depends(get_doordash_client),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
) -> DispatchOut:
    if not client.is_configured():
        raise HTTPException(status_code=503, detail="DoorDash not configured")

    request = DispatchOrderRequest(
        order_id="test-dispatch",
        vendor_name="Barista Parlor",
        vendor_address="519 Gallatin Ave, Nashville, TN 37206",
        vendor_phone="+16155551234",
        customer_name="Test Customer",
        customer_address="1 Broadway, Nashville, TN 37201",
        customer_phone="+16155555678",
        dropoff_instructions="Test delivery - please simulate",
        order_total=2500,
        customer_tip=500,
        items=(DeliveryItem("Latte", 2, 450), DeliveryItem("Croissant", 1, 350)),
    )
    result = await orchestrator.dispatch(request)
    log.info("test dispatch %s: success=%s", result.external_delivery_id, result.success)
    return dispatch_out(result)
