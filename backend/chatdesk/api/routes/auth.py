"""Auth Routes — OAuth sign-in/callback, sign-out, and the current-session probe.

Invariants:
    - sign-in and callback run behind auth_limiter (10 per 15 min per address)
    - The callback's state must equal the state cookie set at sign-in
    - Session cookie is HttpOnly, SameSite=Lax, Secure when configured
    - signout is idempotent: no cookie or an unknown token still answers 200
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from chatdesk.api.handler import HandlerContext, api_handler
from chatdesk.config import get_settings
from chatdesk.core.errors import UnauthorizedError
from chatdesk.schemas.chat import UserResponse
from chatdesk.services import auth as auth_service
from chatdesk.services.limiters import api_limiter, auth_limiter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

STATE_COOKIE = "chatdesk_oauth_state"
STATE_MAX_AGE_SECONDS = 600


async def sign_in(request: Request, ctx: HandlerContext):
    """Redirect to the provider's consent screen."""
    settings = get_settings()
    provider = ctx.params["provider"]
    state = auth_service.new_state()
    url = auth_service.authorization_url(provider, state, settings)
    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        STATE_COOKIE, state, max_age=STATE_MAX_AGE_SECONDS,
        httponly=True, samesite="lax", secure=settings.cookie_secure,
    )
    return response


async def callback(request: Request, ctx: HandlerContext):
    """Complete sign-in: exchange the code, upsert the user, start a session."""
    settings = get_settings()
    provider = ctx.params["provider"]
    code = request.query_params.get("code")
    state = request.query_params.get("state")
    expected = request.cookies.get(STATE_COOKIE)
    if not code or not state or state != expected:
        raise UnauthorizedError("Sign-in could not be verified, please try again")

    identity = await auth_service.exchange_code(provider, code, settings)
    user = await auth_service.upsert_user(ctx.db, identity)
    session = await auth_service.create_session(ctx.db, user, settings.session_max_age_days)

    response = RedirectResponse(settings.post_login_redirect_url, status_code=302)
    response.delete_cookie(STATE_COOKIE)
    response.set_cookie(
        settings.session_cookie_name, session.session_token,
        max_age=settings.session_max_age_days * 24 * 3600,
        httponly=True, samesite="lax", secure=settings.cookie_secure,
    )
    return response


async def sign_out(request: Request, ctx: HandlerContext):
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        await auth_service.delete_session(ctx.db, token)
    response = JSONResponse({"success": True})
    response.delete_cookie(settings.session_cookie_name)
    return response


async def current_session(request: Request, ctx: HandlerContext):
    """Signed-in user, or null."""
    user = UserResponse.model_validate(ctx.user).dump() if ctx.user else None
    return JSONResponse({"user": user})


router.add_api_route(
    "/signin/{provider}",
    api_handler(sign_in, rate_limiter=auth_limiter),
    methods=["GET"],
)
router.add_api_route(
    "/callback/{provider}",
    api_handler(callback, rate_limiter=auth_limiter),
    methods=["GET"],
)
router.add_api_route(
    "/signout",
    api_handler(sign_out, rate_limiter=api_limiter),
    methods=["POST"],
)
router.add_api_route(
    "/session",
    api_handler(current_session, rate_limiter=api_limiter),
    methods=["GET"],
)
