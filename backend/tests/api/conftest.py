"""API test fixtures — FastAPI test client over the in-memory database.

Invariants:
    - get_db dependency overridden to use the test session factory
    - db_manager patched: the chat stream persists replies via db_manager.session()
      and /api/check-db inspects db_manager.engine
    - signed_in_client carries a valid session cookie for seed_user

Design Decisions:
    - DatabaseSessionManager.__new__ + attribute injection: reuses the real
      session() rollback/mapping logic without creating a second engine
"""

import pytest
from httpx import ASGITransport, AsyncClient

import chatdesk.infrastructure.database as db_module
from chatdesk.config import get_settings
from chatdesk.infrastructure.database import get_db, DatabaseSessionManager
from chatdesk.main import app


@pytest.fixture
async def client(test_engine, test_session_factory):
    """FastAPI test client with DB dependency overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager


@pytest.fixture
async def signed_in_client(client, seed_user):
    _, token = seed_user
    client.cookies.set(get_settings().session_cookie_name, token)
    return client
