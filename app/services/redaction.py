from __future__ import annotations
from typing import Any

SECRET_KEYS = frozenset({
    "password", "secret", "signing_secret",
    "token", "access_token",
    "api_key", "apikey",
    "authorization",
})

PHONE_KEYS = frozenset({
    "phone_number",
    "pickup_phone_number",
    "dropoff_phone_number",
    "dasher_phone_number",
})

REDACTED = "**********"


def mask_phone(value: Any) -> str:
    """Mask all but the last four digits."""
    digits = "".join(c for c in str(value) if c.isdigit())
    if len(digits) <= 4:
        return REDACTED
    return "******" + digits[-4:]


def redact_payload(value: Any, *, extra_keys: set[str] | None = None) -> Any:
    """Copy of a provider payload that is safe to log or persist in dispatch attempts."""
    secrets = SECRET_KEYS | {k.lower() for k in (extra_keys or ())}

    def _walk(v: Any, key: str | None = None) -> Any:
        if key in secrets:
            return REDACTED
        if key in PHONE_KEYS and v is not None:
            return mask_phone(v)
        if isinstance(v, dict):
            return {k: _walk(vv, k.lower() if isinstance(k, str) else None) for k, vv in v.items()}
        if isinstance(v, list):
            return [_walk(x) for x in v]
        return v

    return _walk(value)
