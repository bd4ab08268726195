from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import stripe

from app.core.config import Settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundOutcome:
    ok: bool
    refund_id: str | None = None
    status: str | None = None  # provider status, e.g. "succeeded" / "pending"
    error: str | None = None


class RefundGateway(Protocol):
    async def refund(self, *, payment_intent_id: str, amount_cents: int, metadata: dict[str, str]) -> RefundOutcome:
        ...


class StripeRefundGateway:
    """Issues (partial) refunds against a Stripe payment intent."""

    def __init__(self, api_key: str):
        self._api_key = api_key

    async def refund(self, *, payment_intent_id: str, amount_cents: int, metadata: dict[str, str]) -> RefundOutcome:
        try:
            # stripe-python is synchronous; keep the event loop free
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                api_key=self._api_key,
                payment_intent=payment_intent_id,
                amount=amount_cents,
                reason="requested_by_customer",
                metadata=metadata,
            )
        except stripe.StripeError as e:
            log.error("stripe refund failed for %s: %s", payment_intent_id, e)
            return RefundOutcome(ok=False, error=str(e))

        return RefundOutcome(ok=True, refund_id=refund.id, status=refund.status)


def build_refund_gateway(s: Settings) -> RefundGateway | None:
    if not s.stripe_secret_key:
        return None
    return StripeRefundGateway(s.stripe_secret_key.get_secret_value())
