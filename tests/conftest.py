import base64
import os
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

# Settings are read at import time, so the environment has to be in place first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["OTLP_ENDPOINT"] = ""
os.environ["INTERNAL_ADMIN_KEY"] = "test-admin-key"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from app.models import Base, DeliveryRecord, Payment, ScheduledOrder  # noqa: F401

from app.main import app
from app.api.deps import get_doordash_client, get_notifier, get_refund_gateway
from app.core.db import get_db
from app.core.timeutils import utcnow
from app.providers.doordash.auth import DoordashCredentials
from app.providers.doordash.client import DoordashClient
from app.services.circuit_breaker import CircuitBreaker
from app.services.http_client import ProviderHttpClient
from app.services.payments import RefundOutcome


SIGNING_SECRET = base64.urlsafe_b64encode(b"brew-and-board-test-signing-key!").decode().rstrip("=")


def _test_db_url() -> str:
    return os.getenv("DATABASE_URL_TEST") or "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def async_engine():
    url = _test_db_url()
    if url.startswith("sqlite"):
        engine = create_async_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_async_engine(url, pool_pre_ping=True)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


class FakeDoordash:
    """
    MockTransport handler standing in for the DoorDash Drive API.

    Queue responses as (status, json) tuples or exceptions; once the queue is
    empty every request gets `default`.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.queue: list = []
        self.default = (200, {})

    def push(self, *responses) -> None:
        self.queue.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.queue.pop(0) if self.queue else self.default
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNotifier:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.status_changes = []
        self.cancellations = []

    async def order_status_changed(self, notification) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.status_changes.append(notification)

    async def order_cancelled(self, notification) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.cancellations.append(notification)


class FakeRefundGateway:
    def __init__(self, outcome: RefundOutcome | None = None):
        self.outcome = outcome or RefundOutcome(ok=True, refund_id="re_test_123", status="succeeded")
        self.calls = []

    async def refund(self, *, payment_intent_id: str, amount_cents: int, metadata: dict[str, str]) -> RefundOutcome:
        self.calls.append({"payment_intent_id": payment_intent_id, "amount_cents": amount_cents, "metadata": metadata})
        return self.outcome


@pytest.fixture
def credentials() -> DoordashCredentials:
    return DoordashCredentials(developer_id="dev-123", key_id="key-456", signing_secret=SIGNING_SECRET)


@pytest.fixture
def fake_doordash() -> FakeDoordash:
    return FakeDoordash()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_doordash_client(fake_doordash, sleeps, credentials):
    def _make(
        *, configured: bool = True, environment: str = "sandbox", breaker: CircuitBreaker | None = None, **kwargs
    ) -> DoordashClient:
        http = ProviderHttpClient(
            base_url="https://openapi.doordash.com",
            transport=httpx.MockTransport(fake_doordash.handler),
        )
        return DoordashClient(
            credentials=replace(credentials, environment=environment) if configured else None,
            http=http,
            breaker=breaker or CircuitBreaker(name="doordash-test"),
            sleep=kwargs.pop("sleep", sleeps),
            **kwargs,
        )

    return _make


@pytest.fixture
def doordash(make_doordash_client) -> DoordashClient:
    return make_doordash_client()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def refunds() -> FakeRefundGateway:
    return FakeRefundGateway()


@pytest.fixture
def order_factory(db_session: AsyncSession):
    async def _create(**overrides) -> ScheduledOrder:
        now = utcnow()
        fields = dict(
            vendor_name="Barista Parlor",
            vendor_address="519 Gallatin Ave, Nashville, TN 37206",
            vendor_phone="+16155551234",
            delivery_address="1 Broadway, Nashville, TN 37201",
            delivery_instructions="Suite 400",
            contact_name="Jamie Rivera",
            contact_phone="+16155555678",
            contact_email="jamie@example.com",
            scheduled_for=now + timedelta(hours=3),
            items=[{"name": "Latte", "quantity": 2, "price": "4.50"}],
            subtotal=Decimal("30.00"),
            delivery_fee=Decimal("5.00"),
            gratuity=Decimal("10.00"),
            total=Decimal("45.00"),
            status="scheduled",
            created_at=now - timedelta(hours=3),
            updated_at=now - timedelta(hours=3),
        )
        fields.update(overrides)
        order = ScheduledOrder(**fields)
        db_session.add(order)
        await db_session.commit()
        return order

    return _create


@pytest.fixture
def delivery_factory(db_session: AsyncSession):
    async def _create(order: ScheduledOrder | None = None, **overrides) -> DeliveryRecord:
        fields = dict(
            external_delivery_id="BB-TEST-0000ABCD",
            scheduled_order_id=order.id if order else None,
            status="created",
            pickup_address="519 Gallatin Ave, Nashville, TN 37206",
            dropoff_address="1 Broadway, Nashville, TN 37201",
            tip_cents=500,
            order_value_cents=4500,
        )
        fields.update(overrides)
        record = DeliveryRecord(**fields)
        db_session.add(record)
        await db_session.commit()
        return record

    return _create


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, doordash: DoordashClient, notifier: FakeNotifier, refunds: FakeRefundGateway):
    """
    HTTP client that uses the test DB session and fake providers via dependency overrides.
    """
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_doordash_client] = lambda: doordash
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_refund_gateway] = lambda: refunds

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Internal-Admin-Key": "test-admin-key"}
