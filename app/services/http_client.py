from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Literal

import httpx


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any]

    error_code: str | None = None  # TIMEOUT / REQUEST_ERROR / HTTP_<status>
    error_message: str | None = None

    elapsed_ms: int | None = None


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


def _provider_message(detail: dict[str, Any], status_code: int) -> str:
    # DoorDash errors look like {"code": "...", "message": "..."}; some proxies send {"error": "..."}
    for key in ("message", "error"):
        value = detail.get(key)
        if isinstance(value, str) and value:
            return value
    return f"HTTP {status_code}"


def _transport_failure(code: str, message: str) -> HttpResult:
    return HttpResult(
        ok=False,
        status_code=None,
        detail={"error": code.lower()},
        error_code=code,
        error_message=message,
    )


class ProviderHttpClient:
    """
    Single-attempt JSON HTTP client for outbound provider calls (DoorDash, Resend).

    - Uses one AsyncClient instance (connection pooling) with an explicit per-request timeout.
    - Does NOT retry or classify failures; the provider client owns retry policy,
      backoff and circuit breaking.
    - Never raises for transport problems, returns a structured result instead.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 15.0,
        max_response_body_chars: int = 20_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._max_body = max_response_body_chars
        self._default_headers = {"Content-Type": "application/json", **dict(default_headers or {})}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _parse_body(self, resp: httpx.Response) -> dict[str, Any]:
        content_type = (resp.headers.get("content-type") or "").lower()
        if "json" not in content_type:
            return {"raw": _cap_text(resp.text, max_chars=self._max_body), "content_type": content_type or None}
        try:
            parsed = resp.json()
        except ValueError:
            return {"raw": _cap_text(resp.text, max_chars=self._max_body)}
        return parsed if isinstance(parsed, dict) else {"data": parsed}

    async def request_json(
        self,
        *,
        method: HttpMethod,
        url: str,
        headers: Mapping[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> HttpResult:
        # caller headers win over defaults
        h = {**self._default_headers, **dict(headers or {})}

        started = time.perf_counter()
        try:
            resp = await self._client.request(method=method, url=url, headers=h, json=json_body)
        except httpx.TimeoutException as e:
            return _transport_failure("TIMEOUT", str(e) or "Request timed out")
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return _transport_failure("REQUEST_ERROR", str(e) or "Network error")

        detail = self._parse_body(resp)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if resp.is_success:
            return HttpResult(ok=True, status_code=resp.status_code, detail=detail, elapsed_ms=elapsed_ms)

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=_provider_message(detail, resp.status_code),
            elapsed_ms=elapsed_ms,
        )
