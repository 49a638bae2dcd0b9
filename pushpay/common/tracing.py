"""OpenTelemetry setup plus the span helper wrapped around provider calls."""

from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.trace import Status, StatusCode

from pushpay.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Create and register a tracer provider with OTLP HTTP exporter."""

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def provider_span(operation: str, **attributes):
    """Open a client span for one outbound Daraja call.

    Exceptions are recorded on the span and re-raised unchanged.
    """

    tracer = trace.get_tracer("pushpay.provider")
    with tracer.start_as_current_span(f"daraja.{operation}", kind=trace.SpanKind.CLIENT) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"daraja.{key}", value)
        yield span
        span.set_status(Status(StatusCode.OK))
