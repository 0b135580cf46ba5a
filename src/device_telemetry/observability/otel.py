from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "device-telemetry-collector"


def tracing_enabled() -> bool:
    return os.getenv("ENABLE_OTEL", "false").lower() == "true" or bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))


def setup_tracing(service_name: str = DEFAULT_SERVICE_NAME) -> bool:
    """Install an OTLP span exporter when ENABLE_OTEL or an OTLP endpoint is set."""
    if not tracing_enabled():
        return False

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "http://localhost:4317"
    insecure = os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true").lower() == "true"
    resource = Resource.create({"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=insecure)))
    trace.set_tracer_provider(provider)
    logger.info("OpenTelemetry tracing enabled (endpoint=%s, insecure=%s)", endpoint, insecure)
    return True


def instrument_engine(engine) -> bool:
    """Trace SQL statements of a telemetry store engine (once per engine)."""
    if not tracing_enabled() or getattr(engine, "_otel_instrumented", False):
        return False
    SQLAlchemyInstrumentor().instrument(engine=engine)
    engine._otel_instrumented = True
    return True


def get_tracer(name: str) -> trace.Tracer:
    # No-op spans until setup_tracing() installs a provider
    return trace.get_tracer(name)
