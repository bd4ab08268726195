from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass
from typing import Literal

import jwt

from app.core.config import Settings

TOKEN_TTL_SECONDS = 300
TOKEN_AUDIENCE = "doordash"
TOKEN_HEADERS = {"dd-ver": "DD-JWT-V1"}

Environment = Literal["sandbox", "production"]


@dataclass(frozen=True)
class DoordashCredentials:
    developer_id: str
    key_id: str
    signing_secret: str
    environment: Environment = "sandbox"


def credentials_from_settings(s: Settings) -> DoordashCredentials | None:
    secret = s.doordash_signing_secret.get_secret_value() if s.doordash_signing_secret else ""
    if not s.doordash_developer_id or not s.doordash_key_id or not secret:
        return None
    return DoordashCredentials(
        developer_id=s.doordash_developer_id,
        key_id=s.doordash_key_id,
        signing_secret=secret,
        environment=s.doordash_environment,
    )


def decode_signing_secret(secret: str) -> bytes:
    # DoorDash hands out base64url secrets; accept either alphabet, with or without padding
    normalized = secret.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, validate=True)
    except binascii.Error as e:
        raise ValueError("DoorDash signing secret is not valid base64") from e


def sign(credentials: DoordashCredentials | None, *, now: int | None = None) -> str | None:
    """
    Build a short-lived DD-JWT-V1 bearer token.

    Returns None when credentials are missing so callers can report
    "not configured" before any network traffic. Tokens expire after five
    minutes and must not be reused across calls.
    """
    if credentials is None:
        return None

    issued_at = int(time.time()) if now is None else now
    claims = {
        "aud": TOKEN_AUDIENCE,
        "iss": credentials.developer_id,
        "kid": credentials.key_id,
        "iat": issued_at,
        "exp": issued_at + TOKEN_TTL_SECONDS,
    }
    return jwt.encode(
        claims,
        decode_signing_secret(credentials.signing_secret),
        algorithm="HS256",
        headers=TOKEN_HEADERS,
    )
