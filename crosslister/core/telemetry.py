from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from crosslister.core.config import settings
from crosslister.core.db import engine as api_engine

# no-op until a provider is installed below
tracer = trace.get_tracer("crosslister")

_installed = False


def _install_provider(service_name: str) -> bool:
    global _installed
    if not settings.otlp_endpoint:
        return False
    if not _installed:
        resource = Resource.create({"service.name": service_name, "deployment.environment": settings.env})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{settings.otlp_endpoint}/v1/traces")))
        trace.set_tracer_provider(provider)
        _installed = True
    return True


def setup_telemetry(app) -> bool:
    """API process: request spans plus the shared engine's query spans."""
    if not _install_provider(settings.service_name):
        return False
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=api_engine.sync_engine)
    return True


def setup_worker_telemetry() -> bool:
    """Worker process: job spans recorded through `tracer`."""
    return _install_provider(f"{settings.service_name}-worker")
