"""
Shared utilities for the Platform API.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- middleware: Error rendering and request observability
- base_service: FastAPI app wiring and process lifecycle

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
