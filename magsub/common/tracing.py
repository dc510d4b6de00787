"""OpenTelemetry wiring: one OTLP/HTTP tracer provider per process."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_provider: TracerProvider | None = None

tracer = trace.get_tracer("magsub")


def setup_tracing(service_name: str, endpoint: str) -> TracerProvider | None:
    """Export spans to `endpoint` (collector base URL).

    Without an endpoint nothing is installed and spans stay no-ops. A second
    call keeps the provider from the first one.
    """

    global _provider
    if not endpoint:
        return None
    if _provider is None:
        _provider = TracerProvider(resource=Resource.create({"service.name": service_name, "service.namespace": "magsub"}))
        exporter = OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces")
        _provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(_provider)
    return _provider


def instrument_app(app: FastAPI) -> None:
    """Request spans for every route except probes and scrapes."""

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
