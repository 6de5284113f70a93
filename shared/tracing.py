"""Tracing utilities built on OpenTelemetry."""

import os
from typing import Any, Dict, Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


def _build_otlp_exporter_kwargs(endpoint: str) -> Dict[str, Any]:
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")
    headers: Dict[str, str] = {}
    if headers_env:
        for segment in headers_env.split(","):
            if not segment or "=" not in segment:
                continue
            key, value = segment.split("=", 1)
            key = key.strip()
            if key:
                headers[key] = value.strip()

    exporter_kwargs: Dict[str, Any] = {"endpoint": endpoint}
    if headers:
        exporter_kwargs["headers"] = headers
    if endpoint.startswith("http://"):
        exporter_kwargs["insecure"] = True
    return exporter_kwargs


def configure_tracing(service_name: str, endpoint: str, version: str = "1.0.0") -> TracerProvider:
    """Build a tracer provider exporting spans over OTLP gRPC."""
    resource = Resource.create({
        "service.name": service_name,
        "service.version": version,
        "service.instance.id": os.getenv("HOSTNAME", "unknown"),
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_build_otlp_exporter_kwargs(endpoint))))
    return provider


def instrument_app(app: FastAPI, provider: TracerProvider) -> None:
    """Create a server span for every request handled by ``app``."""
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)


def shutdown_tracing(provider: Optional[TracerProvider]) -> None:
    """Flush pending spans and stop the exporter."""
    if provider is not None:
        provider.shutdown()


def add_span_attributes(**attributes):
    """Attach attributes to the current span; no-op when nothing is recording."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)
