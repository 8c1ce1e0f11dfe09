"""
Distributed Tracing with OpenTelemetry.

Disabled by default; without a configured provider spans are no-ops.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from appstore_notifier.config import get_runtime_settings


def setup_tracing() -> None:
    """
    Configure OpenTelemetry tracing.

    Sets up:
    - Tracer provider with service metadata
    - OTLP exporter for sending traces to collector
    - Batch span processor for efficient export
    """
    runtime = get_runtime_settings()
    if not runtime.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": runtime.service_name,
            "service.version": runtime.api_version,
        }
    )

    provider = TracerProvider(resource=resource)
    otlp_exporter = OTLPSpanExporter(
        endpoint=runtime.otlp_endpoint,
        insecure=runtime.otlp_insecure,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """
    Instrument FastAPI application for automatic tracing.

    Must be called after app creation.
    """
    if not get_runtime_settings().tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app)


def get_tracer(name: str) -> Tracer:
    """
    Get a tracer instance for manual span creation.

    Usage:
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("operation_name") as span:
            span.set_attribute("key", "value")
    """
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Add non-None attributes to a span, stringifying non-primitives."""
    for key, value in attributes.items():
        if value is not None:
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)
            else:
                span.set_attribute(key, str(value))
