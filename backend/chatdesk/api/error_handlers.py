"""Error Responder — turns any raised exception into the standard error envelope.

Invariants:
    - Body is always {"error": {"code", "message", "details"?, "timestamp"}}
    - Status comes from status_for(code), never from the exception site
    - Typed errors logged with full context; untyped errors logged with traceback
    - Tracebacks never reach the response body
    - A known request id is echoed as details.request_id and X-Request-ID

Design Decisions:
    - error_response() is a plain function: the handler pipeline calls it directly,
      and the global FastAPI handlers below delegate to it for routes outside the
      pipeline
    - Four handler layers: AppError (domain), RequestValidationError (Pydantic),
      StarletteHTTPException (routing 404/405), Exception (catch-all)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatdesk.core.errors import AppError, ErrorCode, ValidationError, classify_exception
from chatdesk.infrastructure.observability import request_id_var

logger = logging.getLogger(__name__)

_CODE_BY_HTTP_STATUS = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.RECORD_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    408: ErrorCode.TIMEOUT,
    409: ErrorCode.DUPLICATE_ENTRY,
    429: ErrorCode.RATE_LIMITED,
    503: ErrorCode.API_UNAVAILABLE,
}


def code_for_http_status(status_code: int) -> ErrorCode:
    """Closest error code for a framework HTTP status; unmapped 4xx are input errors."""
    if status_code in _CODE_BY_HTTP_STATUS:
        return _CODE_BY_HTTP_STATUS[status_code]
    if 400 <= status_code < 500:
        return ErrorCode.INVALID_INPUT
    return ErrorCode.INTERNAL_SERVER_ERROR


def error_response(
    exc: BaseException,
    request_id: str | None = None,
    user_id: str | None = None,
    path: str | None = None,
) -> JSONResponse:
    """Log and convert an exception to a JSONResponse."""
    request_id = request_id or request_id_var.get()
    if isinstance(exc, AppError):
        error = exc
        context = error.log_context()
        context.update({
            "request_id": request_id,
            "user_id": user_id or error.user_id,
            "path": path,
        })
        log = logger.warning if error.http_status < 500 else logger.error
        log(f"AppError: {error.message}", extra=context)
    else:
        error = classify_exception(exc)
        logger.error(
            f"Unhandled exception: {exc!r}",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={
                "error_code": error.code.value, "request_id": request_id,
                "user_id": user_id, "path": path,
            },
        )

    headers = {"X-Request-ID": request_id} if request_id else None
    return JSONResponse(
        status_code=error.http_status,
        content=error.to_response(request_id=request_id),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_app_error_handler(app)
    _register_validation_error_handler(app)
    _register_http_exception_handler(app)
    _register_generic_error_handler(app)


def _register_app_error_handler(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return error_response(exc, path=request.url.path)


def _register_validation_error_handler(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ):
        """Handle Pydantic validation errors with field-level details."""
        error = ValidationError(
            "Invalid request data",
            {"fields": [
                {
                    "field": ".".join(str(loc) for loc in e["loc"]),
                    "message": e["msg"],
                    "type": e["type"],
                }
                for e in exc.errors()
            ]},
        )
        return error_response(error, path=request.url.path)


def _register_http_exception_handler(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException,
    ):
        """Routing-level 404/405 and explicit HTTPExceptions, in our envelope."""
        code = code_for_http_status(exc.status_code)
        error = AppError(code, str(exc.detail))
        response = error_response(error, path=request.url.path)
        if exc.headers:
            response.headers.update(exc.headers)
        return response


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all — never leaks internal details."""
        return error_response(exc, path=request.url.path)
