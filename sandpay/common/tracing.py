"""OpenTelemetry setup helpers for the gateway app."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from sandpay.common.config import settings


def setup_tracing(service_name: str, endpoint: str | None = None) -> bool:
    """Register a tracer provider with OTLP HTTP exporter.

    `endpoint` defaults to the process settings. Returns False (and does
    nothing) when no collector endpoint is configured.
    """

    if endpoint is None:
        endpoint = settings.otel_exporter_otlp_endpoint
    if not endpoint:
        return False
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)


tracer = trace.get_tracer("sandpay")
