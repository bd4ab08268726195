from __future__ import annotations

import logging
from typing import Literal

from app.core.config import Settings
from app.providers.doordash.webhooks import verify_webhook_signature

log = logging.getLogger(__name__)

SignatureCheck = Literal["verified", "unsigned_allowed", "missing", "invalid"]


def check_webhook_signature(
    raw_body: bytes,
    signature: str | None,
    timestamp: str | None,
    s: Settings,
) -> SignatureCheck:
    """
    Decide whether an inbound DoorDash webhook may be processed.

    Signed requests must verify against DOORDASH_WEBHOOK_SECRET. Unsigned
    requests are only accepted when DOORDASH_ALLOW_UNSIGNED_WEBHOOKS is set,
    which is meant for sandbox testing.
    """
    if not signature and not timestamp:
        if s.doordash_allow_unsigned_webhooks:
            log.warning("accepting unsigned doordash webhook (unsigned webhooks allowed)")
            return "unsigned_allowed"
        return "missing"

    if not signature or not timestamp:
        return "invalid"

    if not s.doordash_webhook_secret:
        log.error("signed doordash webhook received but DOORDASH_WEBHOOK_SECRET is not set")
        return "invalid"

    if verify_webhook_signature(raw_body, signature, timestamp, s.doordash_webhook_secret.get_secret_value()):
        return "verified"
    return "invalid"
