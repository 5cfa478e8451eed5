"""Alembic environment — runs Chatdesk migrations over the async engine.

Design Decisions:
    - URL comes from chatdesk Settings (DATABASE_URL, .env, or the default),
      so the postgresql:// → asyncpg rewrite lives in one place
    - Importing chatdesk.models registers every table on Base.metadata
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

import chatdesk.models  # noqa: F401
from chatdesk.config import get_settings
from chatdesk.db.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _url() -> str:
    return get_settings().database_url


def _configure_and_run(**kwargs) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


async def _run_online() -> None:
    engine = create_async_engine(_url(), poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(
            lambda sync_conn: _configure_and_run(connection=sync_conn),
        )
    await engine.dispose()


if context.is_offline_mode():
    _configure_and_run(
        url=_url(), literal_binds=True, dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_run_online())
