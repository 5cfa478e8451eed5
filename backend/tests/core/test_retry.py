"""Retry helper — attempt counts, backoff schedule, and the exhaustion error."""

import pytest

from chatdesk.core.errors import ErrorCode, ExternalApiError
from chatdesk.core.retry import with_retry


class Recorder:
    """Fake sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _flaky(failures: int, value="ok"):
    calls = {"n": 0}

    async def operation():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise RuntimeError(f"failure {calls['n']}")
        return value

    return operation, calls


async def test_always_failing_operation_runs_max_attempts():
    sleep = Recorder()
    operation, calls = _flaky(failures=99)

    with pytest.raises(ExternalApiError) as exc:
        await with_retry(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

    assert calls["n"] == 3
    assert exc.value.code == ErrorCode.EXTERNAL_API_ERROR
    assert exc.value.details["attempts"] == 3
    assert exc.value.details["last_error"] == "failure 3"
    assert "after 3 attempts" in exc.value.message
    assert isinstance(exc.value.__cause__, RuntimeError)


async def test_succeeds_on_third_attempt():
    sleep = Recorder()
    operation, calls = _flaky(failures=2, value=42)

    result = await with_retry(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

    assert result == 42
    assert calls["n"] == 3


async def test_backoff_doubles_between_attempts():
    sleep = Recorder()
    operation, _ = _flaky(failures=99)

    with pytest.raises(ExternalApiError):
        await with_retry(operation, max_attempts=4, base_delay=0.5, sleep=sleep)

    assert sleep.delays == [0.5, 1.0, 2.0]


async def test_first_success_does_not_sleep():
    sleep = Recorder()
    operation, calls = _flaky(failures=0)

    assert await with_retry(operation, sleep=sleep) == "ok"
    assert calls["n"] == 1
    assert sleep.delays == []
