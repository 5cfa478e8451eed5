"""Auth Service — cookie session resolution and the OAuth sign-in adapter.

Invariants:
    - resolve_session() never raises for a missing or unknown token; it reports
      "no identity" and lets the pipeline decide whether that is an error
    - An expired session is reported as expired (SESSION_EXPIRED), not missing
    - OAuth code exchange is a single attempt: auth calls are never retried
    - Session tokens are 256-bit URL-safe random strings
    - A new provider identity links to an existing user by email only when the
      provider reports that email as verified (FORBIDDEN otherwise)

Design Decisions:
    - Provider table (URLs, scopes) as data, userinfo parsing per provider
    - GitHub may hide the email on /user; fall back to /user/emails (primary + verified)
    - Naive datetimes (SQLite) are read as UTC before comparing with now
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.errors import (
    ApiUnavailableError, ErrorCode, ForbiddenError, RecordNotFoundError,
    UnauthorizedError, ValidationError,
)
from chatdesk.models.user import Account, AuthSession, User

logger = logging.getLogger(__name__)

OAUTH_PROVIDERS = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "scope": "read:user user:email",
    },
}

_GITHUB_EMAILS_URL = "https://api.github.com/user/emails"


@dataclass(frozen=True)
class ResolvedSession:
    user: User | None
    expired: bool = False


@dataclass(frozen=True)
class OAuthIdentity:
    provider: str
    provider_account_id: str
    email: str
    name: str | None = None
    image: str | None = None
    email_verified: bool = False


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -- Session resolution --------------------------------------------------------

async def resolve_session(db: AsyncSession, token: str | None) -> ResolvedSession:
    if not token:
        return ResolvedSession(user=None)
    result = await db.execute(
        select(AuthSession).where(AuthSession.session_token == token),
    )
    session = result.scalar_one_or_none()
    if session is None:
        return ResolvedSession(user=None)
    if _as_utc(session.expires_at) <= datetime.now(timezone.utc):
        return ResolvedSession(user=None, expired=True)
    return ResolvedSession(user=session.user)


async def create_session(
    db: AsyncSession, user: User, max_age_days: int,
) -> AuthSession:
    session = AuthSession(
        session_token=secrets.token_urlsafe(32),
        user_id=user.id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=max_age_days),
    )
    db.add(session)
    await db.commit()
    return session


async def delete_session(db: AsyncSession, token: str) -> None:
    await db.execute(delete(AuthSession).where(AuthSession.session_token == token))
    await db.commit()


# -- OAuth -----------------------------------------------------------------------

def provider_config(provider: str) -> dict:
    config = OAUTH_PROVIDERS.get(provider)
    if config is None:
        raise RecordNotFoundError("provider", provider)
    return config


def provider_credentials(provider: str, settings) -> tuple[str, str]:
    client_id = getattr(settings, f"{provider}_client_id", "")
    client_secret = getattr(settings, f"{provider}_client_secret", "")
    if not client_id or not client_secret:
        raise ApiUnavailableError(
            f"{provider} sign-in", f"{provider} sign-in is not configured",
        )
    return client_id, client_secret


def redirect_uri(provider: str, settings) -> str:
    base = settings.oauth_redirect_base_url.rstrip("/")
    return f"{base}/api/auth/callback/{provider}"


def new_state() -> str:
    return secrets.token_urlsafe(24)


def authorization_url(provider: str, state: str, settings) -> str:
    config = provider_config(provider)
    client_id, _ = provider_credentials(provider, settings)
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri(provider, settings),
        "response_type": "code",
        "scope": config["scope"],
        "state": state,
    }
    if provider == "google":
        params["prompt"] = "select_account"
    return f"{config['auth_url']}?{urlencode(params)}"


async def exchange_code(
    provider: str, code: str, settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> OAuthIdentity:
    """Trade an authorization code for the provider's view of the user."""
    config = provider_config(provider)
    client_id, client_secret = provider_credentials(provider, settings)
    try:
        async with httpx.AsyncClient(
            transport=transport, timeout=30.0, follow_redirects=False,
        ) as client:
            token_response = await client.post(
                config["token_url"],
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri(provider, settings),
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            token_response.raise_for_status()
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise UnauthorizedError("Sign-in was not completed")

            headers = {"Authorization": f"Bearer {access_token}"}
            if provider == "github":
                headers["Accept"] = "application/vnd.github+json"
            userinfo_response = await client.get(config["userinfo_url"], headers=headers)
            userinfo_response.raise_for_status()
            identity = _parse_userinfo(provider, userinfo_response.json())

            if provider == "github" and not identity.get("email"):
                emails_response = await client.get(_GITHUB_EMAILS_URL, headers=headers)
                if emails_response.status_code == 200:
                    identity["email"] = next(
                        (e["email"] for e in emails_response.json()
                         if e.get("primary") and e.get("verified")),
                        None,
                    )
                    identity["email_verified"] = identity["email"] is not None
    except httpx.HTTPStatusError as e:
        logger.error(
            f"OAuth exchange failed for {provider}: {e}",
            extra={"status_code": e.response.status_code},
        )
        raise UnauthorizedError("Sign-in was not completed") from e
    except httpx.HTTPError as e:
        logger.error(f"OAuth provider unreachable ({provider}): {e}")
        raise ApiUnavailableError(f"{provider} sign-in") from e

    if not identity.get("provider_account_id") or not identity.get("email"):
        raise ValidationError(
            "Sign-in provider did not return an email address",
            {"provider": provider}, code=ErrorCode.INVALID_INPUT,
        )
    return OAuthIdentity(provider=provider, **identity)


def _parse_userinfo(provider: str, userinfo: dict) -> dict:
    if provider == "google":
        return {
            "provider_account_id": str(userinfo.get("id") or ""),
            "email": userinfo.get("email"),
            "name": userinfo.get("name"),
            "image": userinfo.get("picture"),
            "email_verified": userinfo.get("verified_email") is True,
        }
    return {
        "provider_account_id": str(userinfo.get("id") or ""),
        "email": userinfo.get("email"),
        "name": userinfo.get("name") or userinfo.get("login"),
        "image": userinfo.get("avatar_url"),
        # GitHub only publishes verified addresses on the profile
        "email_verified": bool(userinfo.get("email")),
    }


async def upsert_user(db: AsyncSession, identity: OAuthIdentity) -> User:
    """Find the user linked to this identity, linking or creating as needed."""
    result = await db.execute(
        select(User)
        .join(Account, Account.user_id == User.id)
        .where(
            Account.provider == identity.provider,
            Account.provider_account_id == identity.provider_account_id,
        ),
    )
    user = result.scalar_one_or_none()
    if user is None:
        result = await db.execute(select(User).where(User.email == identity.email))
        user = result.scalar_one_or_none()
        if user is not None and not identity.email_verified:
            logger.warning(
                f"Refused to link unverified {identity.provider} email to existing user",
                extra={"user_id": str(user.id)},
            )
            raise ForbiddenError(
                "This email is not verified with the sign-in provider. "
                "Sign in with the account you used before."
            )
        if user is None:
            user = User(email=identity.email, name=identity.name, image=identity.image)
            db.add(user)
            await db.flush()
        db.add(Account(
            user_id=user.id,
            provider=identity.provider,
            provider_account_id=identity.provider_account_id,
        ))
    user.name = identity.name or user.name
    user.image = identity.image or user.image
    await db.commit()
    logger.info(
        f"User signed in via {identity.provider}", extra={"user_id": str(user.id)},
    )
    return user
