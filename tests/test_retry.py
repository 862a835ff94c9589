from __future__ import annotations

import pytest

from billing_engine.services.exceptions import TransientStorageError, UserNotFoundError
from billing_engine.utils import retry as retry_module
from billing_engine.utils.retry import retry_async


@pytest.fixture
def sleeps(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    return delays


@pytest.mark.asyncio
async def test_retries_listed_errors_with_backoff(sleeps):
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise TransientStorageError("lock wait timeout")
        return "ok"

    result = await retry_async(
        flaky, retry_on=(TransientStorageError,), max_attempts=3, base_delay=0.5, max_delay=0.8
    )

    assert result == "ok"
    assert calls == 3
    assert sleeps == [0.5, 0.8]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(sleeps):
    calls = 0

    async def always_fails():
        nonlocal calls
        calls += 1
        raise TransientStorageError("deadlock")

    with pytest.raises(TransientStorageError):
        await retry_async(always_fails, retry_on=(TransientStorageError,), max_attempts=2)

    assert calls == 2
    assert len(sleeps) == 1


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(sleeps):
    calls = 0

    async def missing_user():
        nonlocal calls
        calls += 1
        raise UserNotFoundError("User 1 not found.")

    with pytest.raises(UserNotFoundError):
        await retry_async(missing_user, retry_on=(TransientStorageError,), max_attempts=5)

    assert calls == 1
    assert sleeps == []
