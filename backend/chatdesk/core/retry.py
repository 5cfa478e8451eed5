"""Retry Helper — exponential backoff around external data-tool calls.

Invariants:
    - operation is invoked at most max_attempts times
    - Delay before attempt n+1 is base_delay * 2**(n-1) seconds
    - Exhaustion raises ExternalApiError with details.attempts == max_attempts,
      chained from the last failure

Design Decisions:
    - Only for idempotent reads against data APIs; database and auth calls never retry
    - sleep injectable: tests assert the delay schedule without waiting
    - No jitter: per-user traffic to these APIs is low, determinism is easier to test
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from chatdesk.core.errors import ExternalApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await operation(), retrying on failure with exponential backoff."""
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if attempt == max_attempts:
                break
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Attempt {attempt} failed, retrying in {delay}s: {e}",
                extra={"attempt": attempt},
            )
            await sleep(delay)

    raise ExternalApiError(
        f"Operation failed after {max_attempts} attempts: {last_error}",
        {"attempts": max_attempts, "last_error": str(last_error)},
    ) from last_error
