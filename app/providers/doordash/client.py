from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from app.core.config import Settings
from app.core.ids import generate_external_delivery_id
from app.providers.doordash.auth import DoordashCredentials, credentials_from_settings, sign
from app.providers.doordash.types import (
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatusResult,
    DriverLocationResult,
    ProviderResult,
    QuoteResult,
)
from app.services.circuit_breaker import CircuitBreaker
from app.services.http_client import HttpMethod, ProviderHttpClient
from app.services.retry import DEFAULT_RETRY_CONFIG, RetryConfig, compute_backoff_ms


log = logging.getLogger(__name__)

DELIVERIES_PATH = "/drive/v2/deliveries"

# Synthetic contact data for quote requests; no courier is ever dispatched for them
QUOTE_PHONE_NUMBER = "+16155550100"
QUOTE_CONTACT_NAME = "Quote"


class DoordashClient:
    """
    DoorDash Drive client with signed requests, bounded retries and a circuit breaker.

    Every public call returns a result object; network and provider failures
    never raise. The breaker is injected so each client (and each test) can
    own an isolated instance.
    """

    def __init__(
        self,
        *,
        credentials: DoordashCredentials | None,
        http: ProviderHttpClient,
        breaker: CircuitBreaker,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._credentials = credentials
        self._http = http
        self.breaker = breaker
        self._retry_config = retry_config
        self._sleep = sleep

    async def aclose(self) -> None:
        await self._http.aclose()

    # diagnostics

    def is_configured(self) -> bool:
        return self._credentials is not None

    def get_status(self) -> dict[str, Any]:
        snap = self.breaker.snapshot()
        return {
            "configured": self._credentials is not None,
            "environment": self._credentials.environment if self._credentials else "not-configured",
            "circuit_breaker": snap.state,
            "recent_failures": snap.failures,
        }

    # transport

    async def request(
        self,
        method: HttpMethod,
        endpoint: str,
        body: dict[str, Any] | None = None,
        retry_config: RetryConfig | None = None,
    ) -> ProviderResult:
        cfg = retry_config or self._retry_config

        if self._credentials is None:
            return ProviderResult(
                success=False,
                error="DoorDash API not configured. Missing credentials.",
                status_code=503,
                error_kind="not_configured",
            )

        admission = self.breaker.allow()
        if not admission.allowed:
            return ProviderResult(success=False, error=admission.reason, status_code=503, error_kind="circuit_open")

        settled = False
        try:
            last_error = ""
            last_status: int | None = None

            for attempt in range(cfg.max_retries + 1):
                if attempt > 0 and not admission.trial:
                    # another call may have tripped the circuit while this one was backing off
                    reason = self.breaker.rejection()
                    if reason is not None:
                        return ProviderResult(success=False, error=reason, status_code=503, error_kind="circuit_open")

                # re-signed on every attempt, tokens only live for five minutes
                token = sign(self._credentials)
                result = await self._http.request_json(
                    method=method,
                    url=endpoint,
                    headers={"Authorization": f"Bearer {token}"},
                    json_body=body,
                )
                last_status = result.status_code

                if result.ok:
                    settled = True
                    self.breaker.record_success()
                    return ProviderResult(success=True, data=result.detail, status_code=result.status_code)

                last_error = result.error_message or "Unknown error"

                if result.status_code is not None and result.status_code in cfg.non_retryable_statuses:
                    settled = True
                    self.breaker.record_failure()
                    log.warning("doordash %s %s rejected: %s %s", method, endpoint, result.status_code, last_error)
                    return ProviderResult(
                        success=False,
                        data=result.detail,
                        error=last_error,
                        status_code=result.status_code,
                        error_kind="client_error",
                    )

                if attempt < cfg.max_retries:
                    delay_ms = compute_backoff_ms(attempt, cfg.base_delay_ms, cfg.max_delay_ms, jitter=cfg.jitter)
                    log.info(
                        "doordash %s %s failed (%s), retry %d/%d after %dms",
                        method, endpoint, result.error_code, attempt + 1, cfg.max_retries, delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)

            settled = True
            self.breaker.record_failure()
            return ProviderResult(
                success=False,
                error=f"Failed after {cfg.max_retries + 1} attempts: {last_error}",
                status_code=last_status,
                error_kind="transient",
            )
        finally:
            # cancelled or stopped early: the half-open slot must not stay taken
            if not settled:
                self.breaker.release(admission)

    # deliveries

    async def create_delivery(self, request: DeliveryRequest) -> DeliveryResult:
        external_id = request.external_delivery_id
        result = await self.request("POST", DELIVERIES_PATH, request.to_payload())

        if not result.success and result.status_code == 409:
            # A retried create may already have landed; the external id is our idempotency key.
            existing = await self.request("GET", f"{DELIVERIES_PATH}/{external_id}")
            if existing.success:
                log.info("doordash delivery %s already existed, treating create as successful", external_id)
                result = existing

        if result.success and result.data is not None:
            data = result.data
            return DeliveryResult(
                success=True,
                external_delivery_id=external_id,
                provider_delivery_id=data.get("id") or data.get("support_reference"),
                estimated_pickup_time=data.get("pickup_time_estimated") or data.get("estimated_pickup_time"),
                estimated_dropoff_time=data.get("dropoff_time_estimated") or data.get("estimated_dropoff_time"),
                fee=data.get("fee"),
                status_code=result.status_code,
            )

        log.error("doordash delivery creation failed for %s: %s", external_id, result.error)
        return DeliveryResult(
            success=False,
            external_delivery_id=external_id,
            status_code=result.status_code,
            error=result.error,
            error_kind=result.error_kind,
            fallback_triggered=True,
        )

    async def get_delivery_status(self, external_delivery_id: str) -> DeliveryStatusResult:
        result = await self.request("GET", f"{DELIVERIES_PATH}/{external_delivery_id}")
        if not (result.success and result.data is not None):
            return DeliveryStatusResult(success=False, error=result.error)

        data = result.data
        dasher = data.get("dasher") or {}
        return DeliveryStatusResult(
            success=True,
            status=data.get("delivery_status"),
            dasher_name=dasher.get("first_name") or data.get("dasher_name"),
            dasher_phone=dasher.get("phone_number") or data.get("dasher_dropoff_phone_number"),
            tracking_url=data.get("tracking_url"),
        )

    async def cancel_delivery(self, external_delivery_id: str) -> ProviderResult:
        return await self.request("PUT", f"{DELIVERIES_PATH}/{external_delivery_id}/cancel")

    async def update_delivery(
        self,
        external_delivery_id: str,
        *,
        pickup_instructions: str | None = None,
        dropoff_instructions: str | None = None,
        dropoff_phone_number: str | None = None,
        tip: int | None = None,
    ) -> ProviderResult:
        body = {
            "pickup_instructions": pickup_instructions,
            "dropoff_instructions": dropoff_instructions,
            "dropoff_phone_number": dropoff_phone_number,
            "tip": tip,
        }
        body = {k: v for k, v in body.items() if v is not None}
        if not body:
            raise ValueError("update_delivery needs at least one field to change")
        return await self.request("PATCH", f"{DELIVERIES_PATH}/{external_delivery_id}", body)

    async def get_driver_location(self, external_delivery_id: str) -> DriverLocationResult:
        result = await self.request("GET", f"{DELIVERIES_PATH}/{external_delivery_id}")
        if not (result.success and result.data is not None):
            return DriverLocationResult(success=False, error=result.error)

        data = result.data
        location = data.get("dasher_location") or {}
        dasher = data.get("dasher") or {}
        if location.get("lat") is None or location.get("lng") is None:
            return DriverLocationResult(
                success=False,
                status=data.get("delivery_status"),
                error="Driver location not available yet",
            )
        return DriverLocationResult(
            success=True,
            lat=float(location["lat"]),
            lng=float(location["lng"]),
            dasher_name=dasher.get("first_name") or data.get("dasher_name"),
            status=data.get("delivery_status"),
            estimated_dropoff_time=data.get("dropoff_time_estimated") or data.get("estimated_dropoff_time"),
        )

    async def get_delivery_quote(
        self,
        pickup_address: str,
        dropoff_address: str,
        order_value: int | None = None,
    ) -> QuoteResult:
        external_id = generate_external_delivery_id()
        request = DeliveryRequest(
            external_delivery_id=external_id,
            pickup_address=pickup_address,
            pickup_phone_number=QUOTE_PHONE_NUMBER,
            dropoff_address=dropoff_address,
            dropoff_phone_number=QUOTE_PHONE_NUMBER,
            dropoff_contact_given_name=QUOTE_CONTACT_NAME,
            order_value=order_value,
        )
        result = await self.request("POST", DELIVERIES_PATH, {**request.to_payload(), "simulation": True})
        if not (result.success and result.data is not None):
            return QuoteResult(success=False, external_delivery_id=external_id, error=result.error)

        data = result.data
        return QuoteResult(
            success=True,
            external_delivery_id=external_id,
            fee=data.get("fee"),
            currency=data.get("currency"),
            estimated_pickup_time=data.get("pickup_time_estimated") or data.get("estimated_pickup_time"),
            estimated_dropoff_time=data.get("dropoff_time_estimated") or data.get("estimated_dropoff_time"),
        )

    async def advance_delivery(self, external_delivery_id: str, target_status: str) -> ProviderResult:
        """Sandbox-only delivery simulator: pushes a test delivery to `target_status`."""
        if self._credentials is not None and self._credentials.environment != "sandbox":
            return ProviderResult(
                success=False,
                error="Delivery simulator is only available in sandbox",
                status_code=400,
                error_kind="client_error",
            )
        return await self.request(
            "POST",
            f"{DELIVERIES_PATH}/{external_delivery_id}/simulate",
            {"target_status": target_status},
        )


def build_doordash_client(
    s: Settings,
    *,
    breaker: CircuitBreaker | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> DoordashClient:
    http = ProviderHttpClient(
        base_url=s.doordash_base_url,
        timeout_seconds=s.doordash_timeout_seconds,
        transport=transport,
    )
    return DoordashClient(
        credentials=credentials_from_settings(s),
        http=http,
        breaker=breaker or CircuitBreaker(name="doordash"),
        retry_config=retry_config,
        sleep=sleep,
    )
