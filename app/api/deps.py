from fastapi import Depends, Request

from app.core.config import settings
from app.providers.doordash.client import DoordashClient
from app.services.dispatch import DispatchOrchestrator
from app.services.notifications import CeleryOrderNotifier, OrderNotifier
from app.services.payments import RefundGateway, build_refund_gateway


def get_doordash_client(request: Request) -> DoordashClient:
    # built once in the app lifespan so the circuit breaker is shared process-wide
    return request.app.state.doordash


def get_orchestrator(client: DoordashClient = Depends(get_doordash_client)) -> DispatchOrchestrator:
    return DispatchOrchestrator(client)


def get_notifier() -> OrderNotifier:
    return CeleryOrderNotifier()


def get_refund_gateway() -> RefundGateway | None:
    return build_refund_gateway(settings)
