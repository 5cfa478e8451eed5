"""Auth service — session resolution, OAuth code exchange, and user upsert."""

from datetime import timedelta
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy import func, select

from chatdesk.core.errors import (
    ApiUnavailableError, ErrorCode, ForbiddenError, UnauthorizedError,
    ValidationError,
)
from chatdesk.models import Account, User
from chatdesk.services import auth

from tests.factories import create_user


@pytest.fixture
def settings():
    return SimpleNamespace(
        google_client_id="g-id", google_client_secret="g-secret",
        github_client_id="gh-id", github_client_secret="gh-secret",
        oauth_redirect_base_url="https://chat.example.com/",
    )


# -- Sessions ------------------------------------------------------------------

async def test_resolve_without_token(test_db):
    resolved = await auth.resolve_session(test_db, None)
    assert resolved.user is None
    assert resolved.expired is False


async def test_resolve_valid_token(test_db, seed_user):
    user, token = seed_user
    resolved = await auth.resolve_session(test_db, token)
    assert resolved.user.id == user.id


async def test_resolve_expired_token(test_db):
    _, token = await create_user(test_db, expires_in=timedelta(seconds=-1))
    resolved = await auth.resolve_session(test_db, token)
    assert resolved.user is None
    assert resolved.expired is True


async def test_create_and_delete_session(test_db, seed_user):
    user, _ = seed_user
    session = await auth.create_session(test_db, user, max_age_days=30)
    assert len(session.session_token) >= 43
    assert (await auth.resolve_session(test_db, session.session_token)).user.id == user.id

    await auth.delete_session(test_db, session.session_token)
    assert (await auth.resolve_session(test_db, session.session_token)).user is None


# -- Authorization URL -----------------------------------------------------------

def test_authorization_url_for_github(settings):
    url = urlparse(auth.authorization_url("github", "st4te", settings))
    query = parse_qs(url.query)
    assert url.netloc == "github.com"
    assert query["client_id"] == ["gh-id"]
    assert query["state"] == ["st4te"]
    assert query["redirect_uri"] == ["https://chat.example.com/api/auth/callback/github"]


def test_unconfigured_provider_is_unavailable(settings):
    settings.google_client_secret = ""
    with pytest.raises(ApiUnavailableError):
        auth.authorization_url("google", "s", settings)


# -- Code exchange -------------------------------------------------------------

def _provider(routes):
    """MockTransport answering by URL; records request URLs."""
    seen = []

    def handler(request):
        seen.append(str(request.url))
        for prefix, response in routes.items():
            if str(request.url).startswith(prefix):
                return response() if callable(response) else response
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


async def test_exchange_google_code(settings):
    transport, seen = _provider({
        "https://oauth2.googleapis.com/token": httpx.Response(200, json={"access_token": "at"}),
        "https://www.googleapis.com/oauth2/v2/userinfo": httpx.Response(200, json={
            "id": "g-1", "email": "ada@example.com", "name": "Ada",
            "picture": "https://img.example.com/ada.png", "verified_email": True,
        }),
    })

    identity = await auth.exchange_code("google", "code-1", settings, transport=transport)

    assert identity == auth.OAuthIdentity(
        provider="google", provider_account_id="g-1", email="ada@example.com",
        name="Ada", image="https://img.example.com/ada.png", email_verified=True,
    )
    assert len(seen) == 2


async def test_exchange_github_falls_back_to_primary_email(settings):
    transport, seen = _provider({
        "https://github.com/login/oauth/access_token": httpx.Response(
            200, json={"access_token": "at"},
        ),
        "https://api.github.com/user/emails": httpx.Response(200, json=[
            {"email": "old@example.com", "primary": False, "verified": True},
            {"email": "grace@example.com", "primary": True, "verified": True},
        ]),
        "https://api.github.com/user": httpx.Response(200, json={
            "id": 42, "login": "grace", "email": None, "avatar_url": None,
        }),
    })

    identity = await auth.exchange_code("github", "code-1", settings, transport=transport)

    assert identity.email == "grace@example.com"
    assert identity.email_verified is True
    assert identity.name == "grace"
    assert identity.provider_account_id == "42"


async def test_exchange_rejected_code_is_unauthorized(settings):
    transport, _ = _provider({
        "https://oauth2.googleapis.com/token": httpx.Response(400, json={"error": "invalid_grant"}),
    })
    with pytest.raises(UnauthorizedError):
        await auth.exchange_code("google", "bad", settings, transport=transport)


async def test_exchange_unreachable_provider_is_unavailable(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(ApiUnavailableError):
        await auth.exchange_code(
            "google", "code", settings, transport=httpx.MockTransport(handler),
        )


async def test_exchange_without_email_is_invalid_input(settings):
    transport, _ = _provider({
        "https://oauth2.googleapis.com/token": httpx.Response(200, json={"access_token": "at"}),
        "https://www.googleapis.com/oauth2/v2/userinfo": httpx.Response(200, json={"id": "g-1"}),
    })
    with pytest.raises(ValidationError) as exc:
        await auth.exchange_code("google", "code", settings, transport=transport)
    assert exc.value.code == ErrorCode.INVALID_INPUT


# -- Upsert --------------------------------------------------------------------

def _identity(**overrides):
    fields = {
        "provider": "google", "provider_account_id": "g-1",
        "email": "ada@example.com", "name": "Ada", "image": None,
        "email_verified": True,
    }
    fields.update(overrides)
    return auth.OAuthIdentity(**fields)


async def test_upsert_creates_user_and_account(test_db):
    user = await auth.upsert_user(test_db, _identity())
    assert user.email == "ada@example.com"
    assert await test_db.scalar(select(func.count()).select_from(Account)) == 1


async def test_upsert_is_idempotent(test_db):
    first = await auth.upsert_user(test_db, _identity())
    second = await auth.upsert_user(test_db, _identity(name="Ada L."))
    assert first.id == second.id
    assert second.name == "Ada L."
    assert await test_db.scalar(select(func.count()).select_from(User)) == 1


async def test_upsert_links_second_provider_by_email(test_db):
    first = await auth.upsert_user(test_db, _identity())
    second = await auth.upsert_user(
        test_db, _identity(provider="github", provider_account_id="42"),
    )
    assert first.id == second.id
    assert await test_db.scalar(select(func.count()).select_from(Account)) == 2


async def test_upsert_refuses_unverified_email_for_existing_user(test_db):
    existing = await auth.upsert_user(
        test_db, _identity(provider="github", provider_account_id="42"),
    )
    with pytest.raises(ForbiddenError):
        await auth.upsert_user(test_db, _identity(email_verified=False))

    accounts = (await test_db.scalars(
        select(Account).where(Account.user_id == existing.id),
    )).all()
    assert [a.provider for a in accounts] == ["github"]


async def test_upsert_creates_user_from_unverified_email(test_db):
    user = await auth.upsert_user(test_db, _identity(email_verified=False))
    assert user.email == "ada@example.com"


async def test_exchange_google_unverified_email_is_flagged(settings):
    transport, _ = _provider({
        "https://oauth2.googleapis.com/token": httpx.Response(200, json={"access_token": "at"}),
        "https://www.googleapis.com/oauth2/v2/userinfo": httpx.Response(200, json={
            "id": "g-1", "email": "ada@example.com", "verified_email": False,
        }),
    })
    identity = await auth.exchange_code("google", "code", settings, transport=transport)
    assert identity.email_verified is False
