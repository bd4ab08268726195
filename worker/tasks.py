import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.providers.doordash.client import build_doordash_client
from app.services.circuit_breaker import CircuitBreaker
from app.services.dispatch import DispatchOrchestrator, dispatch_scheduled_order
from app.services.email import send_order_email as deliver_order_email

log = logging.getLogger(__name__)

# One breaker per worker process; every dispatch task in the process shares it.
_breaker = CircuitBreaker(name="doordash")


async def _dispatch_order(order_id: str) -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    client = build_doordash_client(settings, breaker=_breaker)

    try:
        async with Session() as db:
            outcome = await dispatch_scheduled_order(db, order_id, DispatchOrchestrator(client))
            if outcome.error_code in (None, "provider_failed"):
                await db.commit()
            else:
                await db.rollback()
    finally:
        await client.aclose()
        await engine.dispose()

    log.info("dispatch task for order %s: dispatched=%s code=%s", order_id, outcome.dispatched, outcome.error_code)
    return {
        "order_id": outcome.order_id,
        "dispatched": outcome.dispatched,
        "external_delivery_id": outcome.external_delivery_id,
        "error_code": outcome.error_code,
    }


@celery.task(name="worker.tasks.dispatch_order", bind=True, max_retries=0)
def dispatch_order(self, order_id: str) -> dict:
    # the DoorDash client already retries; a task retry would mint a second delivery id
    return asyncio.run(_dispatch_order(order_id))


@celery.task(name="worker.tasks.send_order_email", bind=True, max_retries=3, default_retry_delay=30)
def send_order_email(self, kind: str, payload: dict) -> bool:
    return asyncio.run(deliver_order_email(settings, kind=kind, payload=payload))
