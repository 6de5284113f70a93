"""
Shared error handling for the Platform API.

Every failure a handler wants to report is an ``AppError`` tagged with an
``ErrorKind``. The kind fixes both the wire code and the HTTP status, so the
two can never disagree. ``ErrorHandlerMiddleware`` is the only place that
turns these into responses.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


GENERIC_ERROR_MESSAGE = "An unexpected error occurred"
INTERNAL_ERROR_MESSAGE = "An internal error occurred"


class ErrorKind(str, Enum):
    """Closed set of error categories exposed to clients."""

    VALIDATION = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL_ERROR"


_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}

_KINDS_BY_STATUS: Dict[int, ErrorKind] = {status: kind for kind, status in _STATUS_CODES.items()}


def status_for_kind(kind: ErrorKind) -> int:
    """Return the HTTP status paired with an error kind."""
    return _STATUS_CODES[kind]


def kind_for_status(status_code: int) -> Optional[ErrorKind]:
    """Return the error kind for an HTTP status, if the taxonomy has one."""
    if status_code >= 500:
        return ErrorKind.INTERNAL
    return _KINDS_BY_STATUS.get(status_code)


class ErrorResponse(BaseModel):
    """Standard error response format."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    error: str
    message: str
    status_code: int = Field(alias="statusCode")
    trace_id: Optional[str] = Field(default=None, alias="traceId")
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using wire names, dropping empty optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AppError(Exception):
    """Base exception for Platform API errors."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        if not message:
            raise ValueError("AppError requires a non-empty message")
        self._kind = ErrorKind(kind)
        self._message = message
        self._details = dict(details) if details else {}
        self._cause = cause
        super().__init__(message)

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def code(self) -> str:
        return self._kind.value

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self._kind]

    @property
    def details(self) -> Dict[str, Any]:
        return dict(self._details)

    @property
    def cause(self) -> Optional[BaseException]:
        """Underlying fault. Only ever logged, never serialized."""
        return self._cause

    def to_response(self, trace_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.code,
            message=self.message,
            status_code=self.status_code,
            trace_id=trace_id or None,
            details=self.details or None,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(AppError):
    """Client input failed validation."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            ErrorKind.VALIDATION,
            f"Invalid request: {reason}",
            details={"field": field},
        )


class NotFoundError(AppError):
    """Referenced resource does not exist."""

    def __init__(self, resource: str):
        super().__init__(ErrorKind.NOT_FOUND, f"{resource} not found")


class ConflictError(AppError):
    """Request conflicts with the current state of a resource."""

    def __init__(self, reason: str):
        super().__init__(ErrorKind.CONFLICT, reason)


class UnauthorizedError(AppError):
    """Missing or invalid credentials."""

    def __init__(self, reason: str):
        super().__init__(ErrorKind.UNAUTHORIZED, reason)


class InternalError(AppError):
    """Unexpected internal fault. The message never reveals the cause."""

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(ErrorKind.INTERNAL, INTERNAL_ERROR_MESSAGE, cause=cause)


def as_app_error(exc: BaseException) -> AppError:
    """Return ``exc`` unchanged if it is an AppError, else wrap it as internal."""
    if isinstance(exc, AppError):
        return exc
    return InternalError(exc)


def unexpected_error_response(trace_id: Optional[str] = None) -> ErrorResponse:
    """Envelope for faults and unrecognised errors."""
    return ErrorResponse(
        error=ErrorKind.INTERNAL.value,
        message=GENERIC_ERROR_MESSAGE,
        status_code=_STATUS_CODES[ErrorKind.INTERNAL],
        trace_id=trace_id or None,
    )
