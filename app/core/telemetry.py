import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import settings
from app.core.db import engine

log = logging.getLogger(__name__)


def setup_telemetry(app) -> bool:
    """Export API and database spans over OTLP/HTTP. Disabled when OTLP_ENDPOINT is empty."""
    if not settings.otlp_endpoint:
        log.info("tracing disabled: OTLP_ENDPOINT is empty")
        return False

    provider = TracerProvider(resource=Resource.create({
        "service.name": settings.service_name,
        "service.version": app.version,
        "deployment.environment": settings.env,
    }))
    exporter = OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint.rstrip('/')}/v1/traces")
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="/v1/health")
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    return True
