"""Named limiters — configured budgets and the periodic sweep."""

import asyncio

from chatdesk.core.rate_limiter import RateLimiter
from chatdesk.services.limiters import (
    ALL_LIMITERS,
    api_limiter,
    auth_limiter,
    chat_limiter,
    external_api_key,
    external_api_limiter,
    run_sweeper,
    sweep_all,
)


def test_budgets():
    assert (api_limiter.max_requests, api_limiter.window_seconds) == (100, 60)
    assert (chat_limiter.max_requests, chat_limiter.window_seconds) == (60, 60)
    assert (auth_limiter.max_requests, auth_limiter.window_seconds) == (10, 900)
    assert (external_api_limiter.max_requests, external_api_limiter.window_seconds) == (100, 3600)
    assert len(ALL_LIMITERS) == 4


def test_external_api_key():
    assert external_api_key("u1") == "external_api:u1"
    assert external_api_key(None) == "external_api:anonymous"


class _Clock:
    now = 0.0

    def __call__(self):
        return self.now


def test_sweep_all_counts_expired_keys():
    clock = _Clock()
    limiters = (RateLimiter(10, 5, clock=clock), RateLimiter(100, 5, clock=clock))
    for limiter in limiters:
        limiter.check("a")
        limiter.check("b")
    clock.now = 50
    assert sweep_all(limiters) == 2


async def test_sweeper_runs_until_cancelled():
    clock = _Clock()
    limiter = RateLimiter(1, 5, clock=clock)
    limiter.check("a")
    clock.now = 5

    task = asyncio.create_task(run_sweeper(0.01, (limiter,)))
    for _ in range(50):
        await asyncio.sleep(0.01)
        if len(limiter) == 0:
            break
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    assert len(limiter) == 0
