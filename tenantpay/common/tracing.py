"""OpenTelemetry wiring: request spans from FastAPI, manual spans per processor attempt."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from tenantpay.common.config import settings

# Probe and scrape traffic is not worth a span.
UNTRACED_URLS = "health,metrics"


def setup_tracing(service_name: str, endpoint: str | None = None) -> TracerProvider:
    """Register the global tracer provider.

    With an empty endpoint spans are still created (so trace ids propagate) but
    nothing is exported.
    """

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    endpoint = settings.otel_exporter_otlp_endpoint if endpoint is None else endpoint
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)


def get_tracer(name: str) -> trace.Tracer:
    """Tracer for manual spans; a no-op until `setup_tracing` runs."""

    return trace.get_tracer(name)
