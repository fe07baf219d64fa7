"""Tracer provider for the notification service and its delivery jobs."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from encore.common.config import settings

# Probe and scrape traffic would drown out real request spans.
UNTRACED_ROUTES = "health,metrics"


def setup_tracing(service_name: str, endpoint: str | None = None) -> TracerProvider:
    """Register a provider; spans are exported only when an OTLP endpoint is configured."""

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    endpoint = settings.otel_exporter_otlp_endpoint if endpoint is None else endpoint
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_ROUTES)


def get_tracer(name: str = "encore") -> trace.Tracer:
    return trace.get_tracer(name)


def current_trace_id() -> str:
    """Hex id of the active trace, or "" outside a recording span."""

    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return ""
    return trace.format_trace_id(context.trace_id)
