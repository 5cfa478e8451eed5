"""Error Taxonomy — closed set of error codes, each bound to one HTTP status.

Invariants:
    - Every ErrorCode maps to exactly one status (status_for is a total, pure lookup)
    - AppError is immutable after construction; request/user correlation is
      attached by the responder, not by mutating the error
    - to_response() never includes tracebacks or exception reprs
    - classify_exception() prefers Python types; substring matching is a
      best-effort fallback, not an authoritative classification

Design Decisions:
    - Single hierarchy with AppError base: one global handler catches all
    - str Enum for codes: serializes as the bare code string in JSON bodies
    - NETWORK_ERROR stays a 500 (grouped with the other server-side failures)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Closed set of error kinds surfaced to clients."""
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

    # Persistence
    DATABASE_ERROR = "DATABASE_ERROR"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Transport / pipeline
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"

    # External services
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    AI_ERROR = "AI_ERROR"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"

    # Generic
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RECORD_NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.DUPLICATE_ENTRY: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.TIMEOUT: 408,
    ErrorCode.API_UNAVAILABLE: 503,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.EXTERNAL_API_ERROR: 500,
    ErrorCode.AI_ERROR: 500,
    ErrorCode.TOOL_EXECUTION_ERROR: 500,
    ErrorCode.INTERNAL_SERVER_ERROR: 500,
    ErrorCode.NETWORK_ERROR: 500,
}


def status_for(code: ErrorCode | str) -> int:
    """HTTP status for an error code. Raises ValueError for unknown codes."""
    return _STATUS_BY_CODE[ErrorCode(code)]


class AppError(Exception):
    """Base exception for every failure the API reports to a client."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        user_id: str | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.details = details
        self.user_id = user_id
        self.request_id = request_id
        self.timestamp = datetime.now(timezone.utc)

    @property
    def http_status(self) -> int:
        return status_for(self.code)

    def to_response(self, request_id: str | None = None) -> dict:
        """Convert to the standard REST error envelope."""
        details = dict(self.details) if self.details else {}
        rid = request_id or self.request_id
        if rid:
            details["request_id"] = rid
        body: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if details:
            body["details"] = details
        body["timestamp"] = self.timestamp.isoformat()
        return {"error": body}

    def to_tool_result(self) -> dict:
        """Shape fed back to the model when a tool call fails."""
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
        }

    def log_context(self) -> dict:
        """Fields for logger `extra=`."""
        return {
            "error_code": self.code.value,
            "details": self.details,
            "error_timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "request_id": self.request_id,
        }


# ─── Client Errors (4xx) ────────────────────────────────────────

class ValidationError(AppError):
    """Input failed a shape, type, or format check."""
    def __init__(
        self, message: str, details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(code, message, details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message)


class SessionExpiredError(AppError):
    def __init__(self, message: str = "Session has expired, please sign in again"):
        super().__init__(ErrorCode.SESSION_EXPIRED, message)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Access denied"):
        super().__init__(ErrorCode.FORBIDDEN, message)


class RecordNotFoundError(AppError):
    """Resource absent, or not owned by the caller (indistinguishable by design)."""
    def __init__(self, resource: str, resource_id: str | None = None):
        details = {"resource": resource}
        if resource_id is not None:
            details["id"] = resource_id
        super().__init__(
            ErrorCode.RECORD_NOT_FOUND, f"{resource} not found", details,
        )


class MethodNotAllowedError(AppError):
    def __init__(self, method: str, allowed_methods: list[str]):
        super().__init__(
            ErrorCode.METHOD_NOT_ALLOWED,
            f"Method {method} not allowed",
            {"allowed_methods": sorted(allowed_methods)},
        )


class RateLimitedError(AppError):
    def __init__(self, message: str, retry_after_seconds: int | None = None):
        details = None
        if retry_after_seconds is not None:
            details = {"retry_after": retry_after_seconds}
        super().__init__(ErrorCode.RATE_LIMITED, message, details)
        self.retry_after_seconds = retry_after_seconds


# ─── Server / Upstream Errors (5xx, 408) ────────────────────────

class DatabaseError(AppError):
    """Database operation failed."""
    def __init__(
        self, message: str, operation: str,
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
    ):
        super().__init__(code, message, {"operation": operation})
        self.operation = operation


class ExternalApiError(AppError):
    """An external data API failed (after retries, where retries apply)."""
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.EXTERNAL_API_ERROR, message, details)


class ApiUnavailableError(AppError):
    def __init__(self, service: str, message: str | None = None):
        super().__init__(
            ErrorCode.API_UNAVAILABLE,
            message or f"{service} is currently unavailable",
            {"service": service},
        )


class AIError(AppError):
    """Language model call failed."""
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.AI_ERROR, message, details)


class UpstreamTimeoutError(AppError):
    def __init__(self, service: str):
        super().__init__(
            ErrorCode.TIMEOUT, f"{service} did not respond in time",
            {"service": service},
        )


class ToolExecutionError(AppError):
    def __init__(self, tool_name: str, message: str):
        super().__init__(
            ErrorCode.TOOL_EXECUTION_ERROR, message, {"tool": tool_name},
        )


# ─── Classification of untyped failures ─────────────────────────

_MISSING_TABLE_MESSAGE = "Database table does not exist. Please run migrations."
_NETWORK_MESSAGE = "Network connection failed. Please try again."
_GENERIC_MESSAGE = "An unexpected error occurred"


def classify_exception(exc: BaseException) -> AppError:
    """Map an arbitrary exception onto the taxonomy.

    Typed checks first; message substrings only as a last resort.
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return AppError(ErrorCode.NETWORK_ERROR, _NETWORK_MESSAGE)

    text = str(exc).lower()
    # ProgrammingError (PostgreSQL) / OperationalError (SQLite) for a missing table
    if ("relation" in text and "does not exist" in text) or "no such table" in text:
        return AppError(ErrorCode.DATABASE_ERROR, _MISSING_TABLE_MESSAGE)
    if "timeout" in text or "econnrefused" in text or "connection refused" in text:
        return AppError(ErrorCode.NETWORK_ERROR, _NETWORK_MESSAGE)
    return AppError(ErrorCode.INTERNAL_SERVER_ERROR, _GENERIC_MESSAGE)
