"""
OpenTelemetry tracing for the Stats API gate.

Spans are exported over OTLP/gRPC to ``otel_exporter`` from the service
config. Authorization decisions run inside their own span so the resolved
site can be recorded even when the request did not come through FastAPI.
"""

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor


def configure_tracing(service_name: str, otel_exporter: str,
                      service_version: str = "1.0.0") -> TracerProvider:
    """Install a tracer provider exporting to ``otel_exporter``."""
    environment = os.getenv("ENVIRONMENT", "development")
    tracer_provider = TracerProvider(resource=Resource.create({
        "service.name": service_name,
        "service.version": service_version,
        "deployment.environment": environment,
    }))
    trace.set_tracer_provider(tracer_provider)

    exporter = OTLPSpanExporter(endpoint=otel_exporter, insecure=otel_exporter.startswith("http://"))
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if environment != "production":
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    FastAPIInstrumentor().instrument()
    RedisInstrumentor().instrument()

    return tracer_provider


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer from the installed provider."""
    return trace.get_tracer(name)


def add_site_attributes(site) -> None:
    """Annotate the current span with the identity of the authorized site."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    span.set_attribute("site.id", str(site.id))
    span.set_attribute("site.domain", site.domain)
