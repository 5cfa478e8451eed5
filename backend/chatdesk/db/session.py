"""Async Session Factory — DB sessions outside the FastAPI request cycle.

Invariants:
    - Caller owns the returned engine and disposes it when done

Design Decisions:
    - Separate from infrastructure/database.py: scripts (check_db) need a
      factory without pool tuning or the request-scoped error mapping
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker,
)


def create_session_factory(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an engine and async session factory for the given database URL."""
    engine = create_async_engine(database_url, echo=False)
    factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )
    return engine, factory
