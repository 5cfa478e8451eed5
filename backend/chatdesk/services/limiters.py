"""Named Rate Limiters — the per-route budgets and the background sweep.

Invariants:
    - api: 100/min, chat: 60/min, auth: 10/15min per client address
    - external_api: 100/hour per user (tool calls, not HTTP requests)
    - run_sweeper() never raises out of its loop except on cancellation

Design Decisions:
    - Module-level instances: one table per budget for the process lifetime
    - ALL_LIMITERS lists every instance explicitly so the sweeper and tests
      see the same set
"""

import asyncio
import logging

from chatdesk.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def external_api_key(user_id: str | None) -> str:
    return f"external_api:{user_id or 'anonymous'}"


def user_limiter_key(request) -> str:
    """Key by caller-supplied X-User-Id for user-scoped limits on raw requests."""
    return external_api_key(request.headers.get("x-user-id"))


api_limiter = RateLimiter(window_seconds=60, max_requests=100)

chat_limiter = RateLimiter(
    window_seconds=60,
    max_requests=60,
    message="Too many chat requests, please wait a moment.",
)

auth_limiter = RateLimiter(
    window_seconds=15 * 60,
    max_requests=10,
    message="Too many authentication attempts, please try again later.",
)

external_api_limiter = RateLimiter(
    window_seconds=60 * 60,
    max_requests=100,
    key_func=user_limiter_key,
    message="External data tool limit reached, please try again later.",
)

ALL_LIMITERS: tuple[RateLimiter, ...] = (
    api_limiter, chat_limiter, auth_limiter, external_api_limiter,
)


def sweep_all(limiters=ALL_LIMITERS) -> int:
    return sum(limiter.sweep() for limiter in limiters)


async def run_sweeper(interval_seconds: float, limiters=ALL_LIMITERS) -> None:
    """Periodically drop elapsed windows. Runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = sweep_all(limiters)
        except Exception as e:
            logger.error(f"Rate limit sweep failed: {e}", exc_info=True)
            continue
        if removed:
            logger.debug(f"Rate limit sweep removed {removed} expired keys")
