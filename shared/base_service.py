"""
Base service class for Platform API services.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from shared.config import Config, load_config
from shared.errors import AppError, ErrorKind, InternalError, ValidationError, kind_for_status
from shared.logging import configure_logging, resolve_log_level, shutdown_logging
from shared.metrics import get_metrics_collector
from shared.middleware import ErrorHandlerMiddleware, RequestLoggingMiddleware, record_error, record_error_headers
from shared.tracing import configure_tracing, instrument_app, shutdown_tracing

GRACEFUL_SHUTDOWN_SECONDS = 5


def format_rfc3339(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, version: str = "1.0.0", config: Optional[Config] = None):
        self.service_name = service_name
        self.version = version
        self.config = config or load_config()
        self.config.validate_settings()

        observability = self.config.observability

        # Constructed once here and handed to every middleware
        self.logger = configure_logging(service_name, observability.log_level, observability.log_format)
        self.metrics = get_metrics_collector(service_name, version) if observability.metrics_enabled else None

        # Create FastAPI app
        self.app = self._create_app()

        self.tracer_provider = None
        if observability.tracing_enabled:
            self.tracer_provider = configure_tracing(
                observability.tracing_service_name,
                observability.tracing_endpoint,
                version,
            )
            instrument_app(self.app, self.tracer_provider)

        self._setup_exception_handlers()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=self.service_name,
            version=self.version,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self.logger.info("Server started", addr=f"{self.config.server.addr}:{self.config.server.port}")
        try:
            yield
        finally:
            self.logger.info("Server exited gracefully")
            shutdown_tracing(self.tracer_provider)
            shutdown_logging()

    def _setup_middleware(self):
        """Set up middleware.

        Starlette runs the most recently added middleware first, so the error
        handler is added last to wrap everything else.
        """
        self.app.add_middleware(RequestLoggingMiddleware, logger=self.logger, metrics=self.metrics)
        self.app.add_middleware(ErrorHandlerMiddleware, logger=self.logger, metrics=self.metrics)

    def _setup_exception_handlers(self):
        """Translate framework exceptions into recorded application errors."""

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            errors = exc.errors()
            first: Dict[str, Any] = errors[0] if errors else {}
            field = ".".join(str(part) for part in first.get("loc", ()))
            record_error(request, ValidationError(field, first.get("msg", "invalid input")))
            return Response(status_code=400)

        @self.app.exception_handler(StarletteHTTPException)
        async def http_error_handler(request: Request, exc: StarletteHTTPException):
            kind = kind_for_status(exc.status_code)
            if kind is None:
                return await http_exception_handler(request, exc)

            if kind is ErrorKind.INTERNAL:
                record_error(request, InternalError(exc))
            else:
                record_error(request, AppError(kind, str(exc.detail or kind.value)))
            # Keep headers such as WWW-Authenticate on the rendered envelope
            record_error_headers(request, getattr(exc, "headers", None))
            return Response(status_code=exc.status_code)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Liveness endpoint. Never consults downstream services."""
            return {
                "status": "healthy",
                "service": self.service_name,
                "timestamp": format_rfc3339(datetime.now(timezone.utc)),
                "version": self.version,
            }

    def run(self):
        """Run the service until interrupted."""
        server = self.config.server
        observability = self.config.observability

        if self.metrics is not None:
            self.metrics.start_metrics_server(observability.metrics_port)
            self.logger.info("Metrics server started", port=observability.metrics_port)

        uvicorn.run(
            self.app,
            host=server.addr,
            port=server.port,
            log_level=logging.getLevelName(resolve_log_level(observability.log_level)).lower(),
            timeout_keep_alive=int(server.idle_timeout),
            timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
            h11_max_incomplete_event_size=server.max_header_bytes,
        )
