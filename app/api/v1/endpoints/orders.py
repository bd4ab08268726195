from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_doordash_client, get_notifier, get_orchestrator, get_refund_gateway
from app.api.v1.endpoints.doordash import dispatch_out
from app.core.db import get_db
from app.providers.doordash.client import DoordashClient
from app.schemas.doordash import DispatchOut
from app.schemas.order import CancelOrderIn, CancellationOut, CancellationPreviewOut
from app.services.cancellation import CancellationRequest, CancellationService, get_cancellation_preview
from app.services.dispatch import DispatchOrchestrator, dispatch_scheduled_order
from app.services.internal_admin import require_internal_admin
from app.services.notifications import OrderNotifier
from app.services.payments import RefundGateway

router = APIRouter()

DISPATCH_ERROR_STATUS = {
    "order_not_found": 404,
    "order_closed": 409,
    "already_dispatched": 409,
    "not_configured": 503,
}


@router.post("/orders/{order_id}/dispatch", response_model=DispatchOut, dependencies=[Depends(require_internal_admin)])
async def dispatch_order(
    order_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
) -> DispatchOut:
    outcome = await dispatch_scheduled_order(db, order_id, orchestrator, changed_by="admin_dispatch")

    if outcome.error_code in DISPATCH_ERROR_STATUS:
        await db.rollback()
        raise HTTPException(
            status_code=DISPATCH_ERROR_STATUS[outcome.error_code],
            detail={"code": outcome.error_code, "message": outcome.error, "external_delivery_id": outcome.external_delivery_id},
        )

    # provider failures are persisted too; the caller gets fallback_triggered
    await db.commit()
    return dispatch_out(outcome.result)


@router.get("/orders/{order_id}/cancellation-preview", response_model=CancellationPreviewOut)
async def cancellation_preview(order_id: str, db: AsyncSession = Depends(get_db)) -> CancellationPreviewOut:
    preview = await get_cancellation_preview(db, order_id)
    if preview.order_status == "unknown":
        raise HTTPException(status_code=404, detail="Order not found")
    return CancellationPreviewOut(**asdict(preview))


@router.post("/orders/{order_id}/cancel", response_model=CancellationOut, dependencies=[Depends(require_internal_admin)])
async def cancel_order(
    order_id: str,
    payload: CancelOrderIn,
    client: DoordashClient = Depends(get_doordash_client),
    refunds: RefundGateway | None = Depends(get_refund_gateway),
    notifier: OrderNotifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> CancellationOut:
    service = CancellationService(client=client, refunds=refunds, notifier=notifier)
    result = await service.cancel_order(db, CancellationRequest(
        order_id=order_id,
        reason=payload.reason,
        requested_by=payload.requested_by,
        refund_requested=payload.refund_requested,
    ))

    if not result.success:
        raise HTTPException(
            status_code=404 if result.error_code == "order_not_found" else 409,
            detail={"code": result.error_code, "message": result.error},
        )
    return CancellationOut(**asdict(result))
