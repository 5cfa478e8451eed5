"""Database check — connects with DATABASE_URL and reports required tables.

Usage: python scripts/check_db.py   (from backend/, exit code 1 on failure)
"""

import asyncio
import logging
import sys

from sqlalchemy import inspect, text

from chatdesk.api.routes.health import REQUIRED_TABLES
from chatdesk.config import get_settings
from chatdesk.db.session import create_session_factory
from chatdesk.infrastructure.observability import setup_logging

logger = logging.getLogger("check_db")


async def check() -> bool:
    engine, factory = create_session_factory(get_settings().database_url)
    try:
        async with factory() as db:
            await db.execute(text("SELECT 1"))
        async with engine.connect() as conn:
            tables = set(await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names(),
            ))
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
    finally:
        await engine.dispose()

    missing = [t for t in REQUIRED_TABLES if t not in tables]
    for table in REQUIRED_TABLES:
        logger.info(f"{table}: {'ok' if table in tables else 'MISSING'}")
    if missing:
        logger.error(f"Missing tables: {', '.join(missing)}. Run: alembic upgrade head")
        return False
    return True


if __name__ == "__main__":
    setup_logging("INFO", "text")
    sys.exit(0 if asyncio.run(check()) else 1)
