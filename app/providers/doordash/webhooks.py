from __future__ import annotations

import hashlib
import hmac


def compute_webhook_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    message = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str, timestamp: str, secret: str) -> bool:
    """HMAC-SHA256 (hex) over "<timestamp>.<raw body>", compared in constant time."""
    expected = compute_webhook_signature(raw_body, timestamp, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8"))
