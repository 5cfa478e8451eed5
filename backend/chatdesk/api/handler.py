"""Request Handler Pipeline — method check, rate limit, auth, handler, error mapping.

Invariants:
    - Stage order is fixed: check_method → check_rate_limit → resolve_identity → handler
    - A stage either returns None (continue) or a Response (short-circuit);
      stages that fail raise AppError, which the pipeline turns into an envelope
    - A rate-limited request never reaches auth or the handler
    - With require_auth, the handler never runs without a resolved user
    - Every invocation gets a fresh request id: bound for logging, sent as
      X-Request-ID, and echoed in details.request_id on failure
    - EarlyResponse(response) raised anywhere below returns that response unchanged
    - Admitted requests report their outcome to the limiter (skip flags)

Design Decisions:
    - Explicit STAGES tuple over one function with optional branches: order is
      visible in one place and each stage is testable on its own
    - api_handler() builds a FastAPI endpoint closure; the only injected
      dependency is the DB session so tests override get_db as usual
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fastapi import Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.api.error_handlers import error_response
from chatdesk.config import get_settings
from chatdesk.core.errors import (
    MethodNotAllowedError, RateLimitedError, SessionExpiredError, UnauthorizedError,
)
from chatdesk.core.rate_limiter import RateLimiter, RateLimitResult
from chatdesk.infrastructure.database import get_db, to_database_error
from chatdesk.infrastructure.observability import request_id_var
from chatdesk.models.user import User
from chatdesk.services.auth import resolve_session

logger = logging.getLogger(__name__)


class EarlyResponse(Exception):
    """Raise to return a prepared response from deep inside a handler."""

    def __init__(self, response: Response):
        super().__init__("early response")
        self.response = response


@dataclass
class HandlerContext:
    """What a domain handler receives besides the request."""
    request_id: str
    user: User | None
    params: dict[str, str]
    db: AsyncSession


@dataclass
class PipelineState:
    request: Request
    db: AsyncSession
    request_id: str
    require_auth: bool = False
    allowed_methods: frozenset[str] | None = None
    rate_limiter: RateLimiter | None = None
    limit_key: str | None = None
    limit_result: RateLimitResult | None = None
    user: User | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)


Stage = Callable[[PipelineState], Awaitable[Response | None]]
Handler = Callable[[Request, HandlerContext], Awaitable[Response]]


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex}"


# -- Stages ----------------------------------------------------------------------

async def check_method(state: PipelineState) -> Response | None:
    method = state.request.method.upper()
    if state.allowed_methods and method not in state.allowed_methods:
        raise MethodNotAllowedError(method, list(state.allowed_methods))
    return None


async def check_rate_limit(state: PipelineState) -> Response | None:
    limiter = state.rate_limiter
    if limiter is None:
        return None
    state.limit_key = limiter.key_for(state.request)
    result = limiter.check(state.limit_key)
    state.limit_result = result
    state.extra_headers.update(limiter.headers(result))
    if result.allowed:
        return None

    retry_after = limiter.retry_after(result)
    logger.warning(
        "Rate limit exceeded",
        extra={
            "limiter_key": state.limit_key,
            "path": state.request.url.path,
            "error_code": "RATE_LIMITED",
        },
    )
    body = RateLimitedError(limiter.message, retry_after).to_response(state.request_id)
    body["error"]["retry_after"] = retry_after
    return JSONResponse(
        status_code=429,
        content=body,
        headers={"Retry-After": str(retry_after)},
    )


async def resolve_identity(state: PipelineState) -> Response | None:
    token = state.request.cookies.get(get_settings().session_cookie_name)
    resolved = await resolve_session(state.db, token)
    state.user = resolved.user
    if state.require_auth and state.user is None:
        if resolved.expired:
            raise SessionExpiredError()
        raise UnauthorizedError()
    return None


STAGES: tuple[Stage, ...] = (check_method, check_rate_limit, resolve_identity)


# -- Wrapper ---------------------------------------------------------------------

def _finish(response: Response, state: PipelineState) -> Response:
    for name, value in state.extra_headers.items():
        response.headers.setdefault(name, value)
    response.headers["X-Request-ID"] = state.request_id
    return response


def api_handler(
    handler: Handler,
    *,
    require_auth: bool = False,
    allowed_methods: set[str] | list[str] | None = None,
    rate_limiter: RateLimiter | None = None,
):
    """Wrap a domain handler in the pipeline; returns a FastAPI endpoint."""
    methods = (
        frozenset(m.upper() for m in allowed_methods) if allowed_methods else None
    )

    async def endpoint(request: Request, db: AsyncSession = Depends(get_db)) -> Response:
        request_id = new_request_id()
        token = request_id_var.set(request_id)
        state = PipelineState(
            request=request, db=db, request_id=request_id,
            require_auth=require_auth, allowed_methods=methods,
            rate_limiter=rate_limiter,
        )
        success = False
        try:
            for stage in STAGES:
                early = await stage(state)
                if early is not None:
                    return _finish(early, state)

            ctx = HandlerContext(
                request_id=request_id,
                user=state.user,
                params=dict(request.path_params),
                db=db,
            )
            response = await handler(request, ctx)
            success = response.status_code < 400
            return _finish(response, state)
        except EarlyResponse as e:
            success = e.response.status_code < 400
            return _finish(e.response, state)
        except Exception as e:
            error = e
            if isinstance(e, SQLAlchemyError):
                await db.rollback()
                error = to_database_error(e)
            user_id = str(state.user.id) if state.user else None
            return _finish(
                error_response(error, request_id, user_id, request.url.path), state,
            )
        finally:
            if state.limit_result is not None and state.limit_result.allowed:
                rate_limiter.update_count(state.limit_key, success)
            request_id_var.reset(token)

    endpoint.__name__ = getattr(handler, "__name__", "endpoint")
    endpoint.__doc__ = handler.__doc__
    return endpoint
