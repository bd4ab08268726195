import asyncio
import json

import httpx
import pytest

from app.providers.doordash import client as client_module
from app.providers.doordash.types import DeliveryRequest
from app.services.circuit_breaker import CircuitBreaker
from app.services.retry import RetryConfig


def _delivery_request(external_id: str = "BB-TEST-00000001") -> DeliveryRequest:
    return DeliveryRequest(
        external_delivery_id=external_id,
        pickup_address="519 Gallatin Ave, Nashville, TN 37206",
        pickup_phone_number="+16155551234",
        dropoff_address="1 Broadway, Nashville, TN 37201",
        dropoff_phone_number="+16155555678",
        dropoff_contact_given_name="Jamie",
        order_value=4500,
        tip=500,
    )


@pytest.mark.asyncio
async def test_not_configured_makes_no_calls(make_doordash_client, fake_doordash):
    dd = make_doordash_client(configured=False)

    result = await dd.request("GET", "/drive/v2/deliveries/x")

    assert not result.success
    assert result.status_code == 503
    assert result.error_kind == "not_configured"
    assert fake_doordash.requests == []


@pytest.mark.asyncio
async def test_success_on_first_attempt(doordash, fake_doordash, sleeps):
    fake_doordash.push((200, {"delivery_status": "created"}))

    result = await doordash.request("GET", "/drive/v2/deliveries/x")

    assert result.success
    assert result.data == {"delivery_status": "created"}
    assert len(fake_doordash.requests) == 1
    assert fake_doordash.requests[0].headers["authorization"].startswith("Bearer ")
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_non_retryable_status_is_attempted_once(doordash, fake_doordash, sleeps):
    fake_doordash.push((404, {"code": "not_found", "message": "Delivery not found"}))

    result = await doordash.request("GET", "/drive/v2/deliveries/missing")

    assert not result.success
    assert result.status_code == 404
    assert result.error == "Delivery not found"
    assert result.error_kind == "client_error"
    assert len(fake_doordash.requests) == 1
    assert sleeps.calls == []
    assert doordash.breaker.failures == 1


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(doordash, fake_doordash, sleeps):
    fake_doordash.push((500, {}), (503, {}), (502, {}), (200, {"id": "dd-1"}))

    result = await doordash.request("GET", "/drive/v2/deliveries/x")

    assert result.success
    assert len(fake_doordash.requests) == 4
    assert sleeps.calls == [1.0, 2.0, 4.0]
    assert doordash.breaker.failures == 0


@pytest.mark.asyncio
async def test_exhausted_retries_record_one_failure(doordash, fake_doordash, sleeps):
    fake_doordash.default = (500, {"message": "upstream exploded"})

    result = await doordash.request("GET", "/drive/v2/deliveries/x")

    assert not result.success
    assert result.error == "Failed after 4 attempts: upstream exploded"
    assert result.error_kind == "transient"
    assert result.status_code == 500
    assert len(fake_doordash.requests) == 4
    assert sleeps.calls == [1.0, 2.0, 4.0]
    assert doordash.breaker.failures == 1


@pytest.mark.asyncio
async def test_network_errors_are_retried(doordash, fake_doordash):
    fake_doordash.push(httpx.ConnectError("connection refused"), (200, {"ok": True}))

    result = await doordash.request("GET", "/drive/v2/deliveries/x")

    assert result.success
    assert len(fake_doordash.requests) == 2


@pytest.mark.asyncio
async def test_open_circuit_short_circuits(make_doordash_client, fake_doordash):
    breaker = CircuitBreaker(name="open")
    for _ in range(5):
        breaker.record_failure()
    dd = make_doordash_client(breaker=breaker)

    result = await dd.request("GET", "/drive/v2/deliveries/x")

    assert not result.success
    assert result.status_code == 503
    assert result.error_kind == "circuit_open"
    assert result.error.startswith("Circuit breaker open. Retry after")
    assert fake_doordash.requests == []


@pytest.mark.asyncio
async def test_repeated_exhaustion_opens_circuit(make_doordash_client, fake_doordash):
    dd = make_doordash_client(retry_config=RetryConfig(max_retries=0))
    fake_doordash.default = (500, {})

    for _ in range(5):
        await dd.request("GET", "/drive/v2/deliveries/x")
    assert dd.breaker.state == "open"

    result = await dd.request("GET", "/drive/v2/deliveries/x")
    assert result.error_kind == "circuit_open"
    assert len(fake_doordash.requests) == 5


@pytest.mark.asyncio
async def test_token_is_signed_for_every_attempt(doordash, fake_doordash, monkeypatch):
    signed = []
    real_sign = client_module.sign

    def _counting_sign(credentials, **kwargs):
        signed.append(credentials.key_id)
        return real_sign(credentials, **kwargs)

    monkeypatch.setattr(client_module, "sign", _counting_sign)
    fake_doordash.push((500, {}), (500, {}), (200, {}))

    await doordash.request("GET", "/drive/v2/deliveries/x")

    assert signed == ["key-456", "key-456", "key-456"]


def _half_open_breaker(clock) -> CircuitBreaker:
    breaker = CircuitBreaker(name="half-open", clock=clock)
    for _ in range(5):
        breaker.record_failure()
    clock.advance(61)
    return breaker


@pytest.mark.asyncio
async def test_trial_call_keeps_its_retries(make_doordash_client, fake_doordash, clock, sleeps):
    breaker = _half_open_breaker(clock)
    dd = make_doordash_client(breaker=breaker)
    fake_doordash.push((503, {}), (200, {"id": "dd-1"}))

    result = await dd.request("GET", "/drive/v2/deliveries/x")

    assert result.success
    assert len(fake_doordash.requests) == 2
    assert sleeps.calls == [1.0]
    assert breaker.state == "closed"


@pytest.mark.asyncio
async def test_concurrent_calls_in_half_open_do_not_wedge_the_circuit(make_doordash_client, fake_doordash, clock):
    breaker = _half_open_breaker(clock)

    async def yielding_sleep(seconds):
        await asyncio.sleep(0)

    dd = make_doordash_client(breaker=breaker, sleep=yielding_sleep)
    fake_doordash.default = (503, {"message": "unavailable"})

    first, second = await asyncio.gather(
        dd.request("GET", "/drive/v2/deliveries/a"),
        dd.request("GET", "/drive/v2/deliveries/b"),
    )

    assert first.error_kind == "transient"
    assert second.error_kind == "circuit_open"
    assert second.error == "Circuit breaker half-open. Trial request in progress"
    assert len(fake_doordash.requests) == 4

    snap = breaker.snapshot()
    assert snap.state == "open"
    assert snap.open_until == clock.now + 60

    clock.advance(60)
    assert breaker.allow().allowed


@pytest.mark.asyncio
async def test_cancelled_trial_call_gives_back_its_slot(make_doordash_client, fake_doordash, clock):
    breaker = _half_open_breaker(clock)
    parked = asyncio.Event()

    async def parked_sleep(seconds):
        parked.set()
        await asyncio.Event().wait()

    dd = make_doordash_client(breaker=breaker, sleep=parked_sleep)
    fake_doordash.default = (503, {})

    task = asyncio.create_task(dd.request("GET", "/drive/v2/deliveries/x"))
    await parked.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert breaker.state == "half-open"
    admission = breaker.allow()
    assert admission.allowed
    assert admission.trial


@pytest.mark.asyncio
async def test_call_stops_when_circuit_opens_between_retries(make_doordash_client, fake_doordash, clock):
    breaker = CircuitBreaker(name="tripped", clock=clock)

    async def tripping_sleep(seconds):
        # other callers exhaust the threshold while this call backs off
        for _ in range(5):
            breaker.record_failure()

    dd = make_doordash_client(breaker=breaker, sleep=tripping_sleep)
    fake_doordash.default = (500, {})

    result = await dd.request("GET", "/drive/v2/deliveries/x")

    assert not result.success
    assert result.status_code == 503
    assert result.error_kind == "circuit_open"
    assert result.error == "Circuit breaker open. Retry after 60s"
    assert len(fake_doordash.requests) == 1
    assert breaker.failures == 5


@pytest.mark.asyncio
async def test_create_delivery_maps_response(doordash, fake_doordash):
    fake_doordash.push((200, {
        "id": "dd-abc",
        "pickup_time_estimated": "2026-10-18T15:00:00Z",
        "dropoff_time_estimated": "2026-10-18T15:30:00Z",
        "fee": 975,
    }))

    result = await doordash.create_delivery(_delivery_request())

    assert result.success
    assert result.external_delivery_id == "BB-TEST-00000001"
    assert result.provider_delivery_id == "dd-abc"
    assert result.fee == 975
    assert result.estimated_dropoff_time == "2026-10-18T15:30:00Z"

    sent = fake_doordash.requests[0]
    assert sent.method == "POST"
    assert sent.url.path == "/drive/v2/deliveries"
    body = json.loads(sent.content)
    assert body["external_delivery_id"] == "BB-TEST-00000001"
    assert body["tip"] == 500
    assert "pickup_instructions" not in body


@pytest.mark.asyncio
async def test_create_conflict_resolves_to_existing_delivery(doordash, fake_doordash):
    fake_doordash.push(
        (409, {"code": "duplicate_delivery_id", "message": "Delivery already exists"}),
        (200, {"id": "dd-existing", "fee": 800}),
    )

    result = await doordash.create_delivery(_delivery_request())

    assert result.success
    assert result.provider_delivery_id == "dd-existing"
    assert [r.method for r in fake_doordash.requests] == ["POST", "GET"]
    assert fake_doordash.requests[1].url.path == "/drive/v2/deliveries/BB-TEST-00000001"


@pytest.mark.asyncio
async def test_create_failure_triggers_fallback(doordash, fake_doordash):
    fake_doordash.push((422, {"message": "Invalid dropoff address"}))

    result = await doordash.create_delivery(_delivery_request())

    assert not result.success
    assert result.fallback_triggered
    assert result.error == "Invalid dropoff address"
    assert result.status_code == 422


@pytest.mark.asyncio
async def test_cancel_delivery(doordash, fake_doordash):
    result = await doordash.cancel_delivery("BB-TEST-00000001")

    assert result.success
    assert fake_doordash.requests[0].method == "PUT"
    assert fake_doordash.requests[0].url.path == "/drive/v2/deliveries/BB-TEST-00000001/cancel"


@pytest.mark.asyncio
async def test_update_delivery_sends_only_given_fields(doordash, fake_doordash):
    await doordash.update_delivery("BB-1", dropoff_instructions="Ring the bell")

    sent = fake_doordash.requests[0]
    assert sent.method == "PATCH"
    assert json.loads(sent.content) == {"dropoff_instructions": "Ring the bell"}


@pytest.mark.asyncio
async def test_update_delivery_requires_a_field(doordash):
    with pytest.raises(ValueError):
        await doordash.update_delivery("BB-1")


@pytest.mark.asyncio
async def test_driver_location(doordash, fake_doordash):
    fake_doordash.push((200, {
        "delivery_status": "enroute_to_dropoff",
        "dasher": {"first_name": "Sam"},
        "dasher_location": {"lat": 36.16, "lng": -86.78},
    }))

    location = await doordash.get_driver_location("BB-1")

    assert location.success
    assert (location.lat, location.lng) == (36.16, -86.78)
    assert location.dasher_name == "Sam"


@pytest.mark.asyncio
async def test_driver_location_not_available_yet(doordash, fake_doordash):
    fake_doordash.push((200, {"delivery_status": "created"}))

    location = await doordash.get_driver_location("BB-1")

    assert not location.success
    assert location.error == "Driver location not available yet"


@pytest.mark.asyncio
async def test_quote_is_a_simulated_create(doordash, fake_doordash):
    fake_doordash.push((200, {"fee": 650, "currency": "USD"}))

    quote = await doordash.get_delivery_quote("519 Gallatin Ave", "1 Broadway, Nashville", 2500)

    assert quote.success
    assert quote.fee == 650
    body = json.loads(fake_doordash.requests[0].content)
    assert body["simulation"] is True
    assert body["order_value"] == 2500
    assert body["external_delivery_id"] == quote.external_delivery_id


@pytest.mark.asyncio
async def test_advance_delivery_refused_outside_sandbox(make_doordash_client, fake_doordash):
    dd = make_doordash_client(environment="production")

    result = await dd.advance_delivery("BB-1", "delivered")

    assert not result.success
    assert result.status_code == 400
    assert fake_doordash.requests == []


def test_status_report(doordash, make_doordash_client):
    assert doordash.get_status() == {
        "configured": True,
        "environment": "sandbox",
        "circuit_breaker": "closed",
        "recent_failures": 0,
    }
    assert make_doordash_client(configured=False).get_status()["environment"] == "not-configured"
