from __future__ import annotations

import logging

import httpx

from app.core.config import Settings
from app.services.http_client import ProviderHttpClient

log = logging.getLogger(__name__)

RESEND_BASE_URL = "https://api.resend.com"


def render_order_status(payload: dict) -> tuple[str, str]:
    lines = [f"Hi {payload['customer_name']},", "", payload["status_message"]]
    if payload.get("driver_name"):
        lines.append(f"Driver: {payload['driver_name']}")
    if payload.get("estimated_arrival"):
        lines.append(f"Estimated arrival: {payload['estimated_arrival']}")
    if payload.get("tracking_url"):
        lines.append(f"Track your order: {payload['tracking_url']}")
    subject = f"Order {payload['order_id']} update: {payload['status'].replace('_', ' ')}"
    return subject, "\n".join(lines)


def render_order_cancelled(payload: dict) -> tuple[str, str]:
    lines = [
        f"Hi {payload['customer_name']},",
        "",
        f"Your order {payload['order_id']} has been cancelled.",
        f"Reason: {payload['reason']}",
    ]
    if payload.get("refund_amount"):
        lines.append(f"Refund: ${payload['refund_amount']} ({payload.get('refund_status', 'pending')})")
    return f"Order {payload['order_id']} cancelled", "\n".join(lines)


RENDERERS = {
    "order_status": render_order_status,
    "order_cancelled": render_order_cancelled,
}


async def send_order_email(
    s: Settings,
    *,
    kind: str,
    payload: dict,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    if not s.resend_api_key:
        log.warning("email service not configured, dropping %s email for order %s", kind, payload.get("order_id"))
        return False
    if not payload.get("customer_email"):
        log.warning("no customer email for order %s, skipping %s email", payload.get("order_id"), kind)
        return False

    subject, text = RENDERERS[kind](payload)
    client = ProviderHttpClient(
        base_url=RESEND_BASE_URL,
        timeout_seconds=10.0,
        default_headers={"Authorization": f"Bearer {s.resend_api_key.get_secret_value()}"},
        transport=transport,
    )
    try:
        result = await client.request_json(
            method="POST",
            url="/emails",
            json_body={"from": s.email_from, "to": [payload["customer_email"]], "subject": subject, "text": text},
        )
    finally:
        await client.aclose()

    if not result.ok:
        log.error("email send failed for order %s: %s", payload.get("order_id"), result.error_message)
        return False
    return True
