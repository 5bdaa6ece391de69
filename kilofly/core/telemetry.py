import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from kilofly.core.config import settings
from kilofly.core.db import engine

log = logging.getLogger(__name__)

# Health probes and webhook retries are noise in traces
EXCLUDED_URLS = "v1/health,v1/webhooks/cinetpay/.*"


def setup_telemetry(app, *, version: str = "0.1.0") -> None:
    if not settings.telemetry_enabled:
        log.info("telemetry disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": version,
            "deployment.environment": settings.env,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint}/v1/traces"))
    )
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    log.info("telemetry exporting to %s", settings.otlp_endpoint)
