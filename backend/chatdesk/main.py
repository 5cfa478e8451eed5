"""Chatdesk API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map every exception to the {"error": {...}} envelope
    - CORS configured from settings (not hardcoded)
    - Database initialized and the rate-limit sweeper started in the lifespan;
      the sweeper is cancelled on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Sweeper as an asyncio task: independent of request handling, no thread
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatdesk.api.error_handlers import register_error_handlers
from chatdesk.api.routes import auth, chat_stream, chats, health
from chatdesk.config import get_settings
from chatdesk.infrastructure.database import init_db
from chatdesk.infrastructure.observability import setup_logging
from chatdesk.services.limiters import run_sweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    sweeper = asyncio.create_task(
        run_sweeper(settings.rate_limit_sweep_interval_seconds),
    )
    logger.info("Chatdesk API started")
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Chatdesk API shutting down")


app = FastAPI(
    title="Chatdesk API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Chat-Id", "X-Request-ID", "Retry-After",
        "X-RateLimit-Limit", "X-RateLimit-Remaining",
        "X-RateLimit-Reset", "X-RateLimit-Window",
    ],
)

# Routes: explicit registration
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(chats.router)
app.include_router(chat_stream.router)

register_error_handlers(app)
