"""
Request pipeline middleware for the Platform API.

Two middlewares wrap every route:

- ``ErrorHandlerMiddleware`` is the outermost layer. It is the recovery
  boundary for the request and the single place where errors become JSON
  envelopes.
- ``RequestLoggingMiddleware`` runs inside it. It assigns the trace ID and
  emits one structured log record per completed request.

Handlers report failures by raising an ``AppError`` or by calling
``record_error`` and returning normally.
"""

import time
from typing import Any, Dict, List, Mapping, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from shared.errors import AppError, ErrorResponse, as_app_error, unexpected_error_response
from shared.logging import clear_context, new_trace_id, set_trace_id
from shared.metrics import MetricsCollector
from shared.tracing import add_span_attributes

TRACE_HEADER = "X-Trace-ID"

# Metrics label for requests no route matched
UNMATCHED_ROUTE = "unmatched"


def record_error(request: Request, error: BaseException) -> None:
    """Record an error for the error middleware to render after the handler returns."""
    errors: Optional[List[BaseException]] = getattr(request.state, "errors", None)
    if errors is None:
        errors = []
        request.state.errors = errors
    errors.append(error)


def recorded_error(request: Request) -> Optional[BaseException]:
    """Return the most recently recorded error, if any."""
    errors = getattr(request.state, "errors", None)
    if not errors:
        return None
    return errors[-1]


def get_request_trace_id(request: Request) -> Optional[str]:
    """Return the trace ID assigned to this request, if any."""
    return getattr(request.state, "trace_id", None) or None


def record_error_headers(request: Request, headers: Optional[Mapping[str, str]]) -> None:
    """Record headers to send with the rendered error envelope."""
    if headers:
        request.state.error_headers = dict(headers)


def get_route_template(request: Request) -> str:
    """Return the matched route template, or ``UNMATCHED_ROUTE`` when no route matched."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from standard headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch faults and render recorded errors as JSON envelopes."""

    def __init__(self, app, logger: Any, metrics: Optional[MetricsCollector] = None):
        super().__init__(app)
        self.logger = logger
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.errors = []

        try:
            response = await call_next(request)
        except AppError as exc:
            return self._render_app_error(request, exc)
        except Exception as exc:
            trace_id = get_request_trace_id(request)
            self.logger.error(
                "panic recovered",
                panic=repr(exc),
                method=request.method,
                path=request.url.path,
                trace_id=trace_id,
                exc_info=exc,
            )
            return self._render(unexpected_error_response(trace_id))

        error = recorded_error(request)
        if error is None:
            return response
        headers = getattr(request.state, "error_headers", None)
        if isinstance(error, AppError):
            return self._render_app_error(request, error, headers)

        # Unknown error type: log the original, hide it from the client
        trace_id = get_request_trace_id(request)
        self.logger.error(
            "unknown error",
            error=str(error),
            error_type=type(error).__name__,
            method=request.method,
            path=request.url.path,
            trace_id=trace_id,
        )
        return self._render(unexpected_error_response(trace_id), headers)

    def _render_app_error(
        self,
        request: Request,
        error: AppError,
        headers: Optional[Dict[str, str]] = None,
    ) -> Response:
        trace_id = get_request_trace_id(request)
        log_fields = {
            "code": error.code,
            "message": error.message,
            "statusCode": error.status_code,
            "method": request.method,
            "path": request.url.path,
            "trace_id": trace_id,
        }
        if error.status_code >= 500:
            cause = error.cause
            self.logger.error(
                "application error",
                cause=repr(cause) if cause is not None else None,
                exc_info=cause,
                **log_fields,
            )
        else:
            self.logger.warning("application error", **log_fields)
        return self._render(error.to_response(trace_id), headers)

    def _render(self, envelope: ErrorResponse, extra_headers: Optional[Dict[str, str]] = None) -> Response:
        if self.metrics is not None:
            self.metrics.record_error(envelope.error)

        headers = dict(extra_headers or {})
        if envelope.trace_id:
            headers[TRACE_HEADER] = envelope.trace_id
        return JSONResponse(
            status_code=envelope.status_code,
            content=envelope.to_dict(),
            headers=headers,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign a trace ID and log every completed request."""

    def __init__(self, app, logger: Any, metrics: Optional[MetricsCollector] = None):
        super().__init__(app)
        self.logger = logger
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = (request.headers.get(TRACE_HEADER) or "").strip() or new_trace_id()
        request.state.trace_id = trace_id
        set_trace_id(trace_id)
        add_span_attributes(**{"platform.trace_id": trace_id})

        # Start timing
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
        except Exception as exc:
            status_code = as_app_error(exc).status_code
            raise
        else:
            # Report the status the error middleware will render
            error = recorded_error(request)
            status_code = as_app_error(error).status_code if error is not None else response.status_code
            response.headers[TRACE_HEADER] = trace_id
            return response
        finally:
            duration = time.perf_counter() - start_time
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=int(duration * 1000),
                trace_id=trace_id,
                ip=get_client_ip(request),
            )
            if self.metrics is not None:
                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=get_route_template(request),
                    status_code=status_code,
                    duration=duration,
                )
            clear_context()
