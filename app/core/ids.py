import secrets
import time
import uuid

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_external_delivery_id() -> str:
    # BB-<ms timestamp base36>-<8 hex>, correlates our order with the provider record
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = secrets.token_hex(4)
    return f"BB-{timestamp}-{random_part}".upper()
