"""Rate Limiter — fixed-window and sliding-window request admission per key.

Invariants:
    - check() admits at most max_requests per key per window
    - Fixed window: count increments only on admission; a new window starts
      (count=0) once the stored reset_time has passed, regardless of rejections
    - remaining = max(0, max_requests - count - 1), computed before the increment
    - Sliding window: an admission at t counts against a check at now while
      now - t < window_seconds, and never after
    - The backing table is private to one limiter instance (no shared globals)

Design Decisions:
    - check() is synchronous with no await inside: under asyncio the
      read-increment-write for a key is atomic within one process
    - update_count() applies skip_successful/skip_failed as a post-hoc decrement.
      It runs after the handler's awaits, so it can interleave with other
      requests' increments on the same key. Known approximation, kept as is.
    - Store behind its own small interface so a shared external counter can
      replace it without changing check()'s contract
    - clock injectable: tests drive time without sleeping
"""

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

DEFAULT_MESSAGE = "Too many requests, please try again later."


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float
    limit: int
    window_seconds: float


@dataclass
class RateLimitRecord:
    count: int
    reset_time: float


class InMemoryRateLimitStore:
    """Process-local key → value table."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> list[tuple[str, Any]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


def client_address(request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


def default_key(request) -> str:
    return f"rate_limit:{client_address(request)}"


class RateLimiter:
    """Fixed-window limiter."""

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        key_func: Callable[[Any], str] | None = None,
        skip_successful_requests: bool = False,
        skip_failed_requests: bool = False,
        message: str = DEFAULT_MESSAGE,
        clock: Callable[[], float] = time.time,
        store: InMemoryRateLimitStore | None = None,
    ):
        if window_seconds <= 0 or max_requests < 1:
            raise ValueError("window_seconds and max_requests must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.key_func = key_func or default_key
        self.skip_successful_requests = skip_successful_requests
        self.skip_failed_requests = skip_failed_requests
        self.message = message
        self._clock = clock
        self._store = store or InMemoryRateLimitStore()

    def key_for(self, request) -> str:
        return self.key_func(request)

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        record = self._store.get(key)
        if record is None or record.reset_time <= now:
            record = RateLimitRecord(count=0, reset_time=now + self.window_seconds)

        allowed = record.count < self.max_requests
        remaining = max(0, self.max_requests - record.count - 1)
        if allowed:
            record.count += 1
        self._store.put(key, record)
        return self._result(allowed, remaining, record.reset_time)

    def update_count(self, key: str, success: bool) -> None:
        """Undo an admission for outcomes configured not to count."""
        if not self._should_skip(success):
            return
        record = self._store.get(key)
        if record is not None and record.count > 0:
            record.count -= 1

    def headers(self, result: RateLimitResult) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(math.ceil(result.reset_time)),
            "X-RateLimit-Window": str(math.ceil(result.window_seconds)),
        }

    def retry_after(self, result: RateLimitResult) -> int:
        """Whole seconds until the key may retry (at least 1)."""
        return max(1, math.ceil(result.reset_time - self._clock()))

    def sweep(self) -> int:
        """Drop records whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, rec in self._store.items() if rec.reset_time <= now]
        for key in expired:
            self._store.delete(key)
        return len(expired)

    def reset(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def _should_skip(self, success: bool) -> bool:
        if success:
            return self.skip_successful_requests
        return self.skip_failed_requests

    def _result(self, allowed: bool, remaining: int, reset_time: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_time=reset_time,
            limit=self.max_requests,
            window_seconds=self.window_seconds,
        )


class SlidingWindowRateLimiter(RateLimiter):
    """Exact limiter: keeps one timestamp per admission."""

    def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        stamps: deque = self._store.get(key) or deque()
        self._evict(stamps, now)

        allowed = len(stamps) < self.max_requests
        remaining = max(0, self.max_requests - len(stamps) - (1 if allowed else 0))
        if allowed:
            stamps.append(now)
        self._store.put(key, stamps)

        reset_time = stamps[0] + self.window_seconds if stamps else now + self.window_seconds
        return self._result(allowed, remaining, reset_time)

    def update_count(self, key: str, success: bool) -> None:
        if not self._should_skip(success):
            return
        stamps = self._store.get(key)
        if stamps:
            stamps.pop()

    def sweep(self) -> int:
        now = self._clock()
        removed = 0
        for key, stamps in self._store.items():
            self._evict(stamps, now)
            if not stamps:
                self._store.delete(key)
                removed += 1
        return removed

    def _evict(self, stamps: deque, now: float) -> None:
        while stamps and now - stamps[0] >= self.window_seconds:
            stamps.popleft()
