"""Root conftest — shared test configuration, DB fixtures, limiter isolation.

Invariants:
    - Tests never use real API keys or a real database
    - Every test gets a fresh in-memory SQLite database
    - Named rate limiters start empty in every test

Design Decisions:
    - SQLite in-memory via aiosqlite: fast, no external dependency; PostgreSQL
      specific behavior (FK cascades) is not relied on by the code under test
"""

import os

# Ensure tests don't accidentally use real API keys
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test-fake-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession, create_async_engine, async_sessionmaker,
)

from chatdesk.db.base import Base  # noqa: E402
from chatdesk.services.limiters import ALL_LIMITERS  # noqa: E402

from tests.factories import create_user  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_limiters():
    for limiter in ALL_LIMITERS:
        limiter.reset()
    yield
    for limiter in ALL_LIMITERS:
        limiter.reset()


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def seed_user(test_db):
    return await create_user(test_db)
