"""Health & Schema Probes — liveness and database schema check.

Invariants:
    - GET /api/health always returns 200 if the process is up (liveness)
    - GET /api/check-db returns 503 API_UNAVAILABLE if the database is unreachable,
      500 DATABASE_ERROR listing missing tables if the schema is incomplete
    - Neither probe requires a session or counts against a rate limit

Design Decisions:
    - Plain routes outside the handler pipeline: probes must answer even when the
      limiter or session lookup misbehaves; errors still reach the global handlers
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from sqlalchemy.exc import SQLAlchemyError

from chatdesk.core.errors import ApiUnavailableError, AppError, ErrorCode
from chatdesk.infrastructure.database import get_db_manager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["health"])

REQUIRED_TABLES = ("users", "accounts", "auth_sessions", "chats", "messages")


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "service": "chatdesk-api",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/check-db")
async def check_db():
    """Connectivity plus presence of every required table."""
    try:
        tables = await get_db_manager().existing_tables()
    except (SQLAlchemyError, OSError, RuntimeError) as e:
        logger.error(f"Database check failed: {e}")
        raise ApiUnavailableError("Database", "Database connection failed") from e

    report = {name: name in tables for name in REQUIRED_TABLES}
    missing = [name for name, present in report.items() if not present]
    if missing:
        raise AppError(
            ErrorCode.DATABASE_ERROR,
            "Database table does not exist. Please run migrations.",
            {"missing_tables": missing},
        )
    return {"status": "ok", "database": "connected", "tables": report}
