"""
Shared logging configuration for the Platform API.
"""

import logging
import secrets
import string
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for trace correlation
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

TRACE_ID_LENGTH = 16
TRACE_ID_ALPHABET = string.ascii_letters + string.digits

_LOG_LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def resolve_log_level(log_level: Optional[str]) -> int:
    """Map a configured level name to a stdlib level, defaulting to INFO."""
    return _LOG_LEVELS.get((log_level or "").strip().lower(), logging.INFO)


def configure_logging(
    service_name: str,
    log_level: str = "info",
    log_format: str = "json",
) -> structlog.stdlib.BoundLogger:
    """Configure structured logging for a service and return its logger.

    ``json`` renders one JSON object per line on stderr; any other format
    renders human readable lines on stdout.
    """
    json_output = (log_format or "").strip().lower() == "json"
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_correlation_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr if json_output else sys.stdout,
        level=resolve_log_level(log_level),
        force=True,
    )

    return get_logger(service_name).bind(service=service_name)


def shutdown_logging() -> None:
    """Flush every handler attached to the root logger."""
    for handler in logging.getLogger().handlers:
        handler.flush()


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the current trace ID to log events that don't carry one."""
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict.setdefault("trace_id", trace_id)
    return event_dict


def new_trace_id() -> str:
    """Generate a random alphanumeric trace ID."""
    return "".join(secrets.choice(TRACE_ID_ALPHABET) for _ in range(TRACE_ID_LENGTH))


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Set trace ID in context, generating one when none is given."""
    if not trace_id:
        trace_id = new_trace_id()
    trace_id_var.set(trace_id)
    return trace_id


def get_trace_id() -> Optional[str]:
    """Return the trace ID bound to the current context, if any."""
    return trace_id_var.get()


def clear_context():
    """Clear all context variables."""
    trace_id_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
