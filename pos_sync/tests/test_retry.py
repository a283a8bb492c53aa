import asyncio

import pytest

from pos_sync.app.errors import DeliveryError, RetryCancelled, StorageError
from pos_sync.workers.retry import RetryExecutor


class _Flaky:
    def __init__(self, failures, exc=DeliveryError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"boom {self.calls}")
        return "ok"


def test_backoff_doubles_and_last_error_is_raised():
    delays = []

    async def record(delay):
        delays.append(delay)

    op = _Flaky(failures=10)

    async def scenario():
        executor = RetryExecutor(max_attempts=3, base_delay=1.0, sleep=record)
        await executor.execute(op)

    with pytest.raises(DeliveryError, match="boom 3"):
        asyncio.run(scenario())
    assert op.calls == 3
    assert delays == [1.0, 2.0]


def test_succeeds_on_a_later_attempt():
    op = _Flaky(failures=1)

    async def scenario():
        executor = RetryExecutor(max_attempts=3, base_delay=0.0)
        return await executor.execute(op)

    assert asyncio.run(scenario()) == "ok"
    assert op.calls == 2


def test_per_call_overrides():
    delays = []

    async def record(delay):
        delays.append(delay)

    op = _Flaky(failures=10)

    async def scenario():
        executor = RetryExecutor(max_attempts=3, base_delay=1.0, sleep=record)
        await executor.execute(op, max_attempts=4, base_delay=0.5)

    with pytest.raises(DeliveryError):
        asyncio.run(scenario())
    assert delays == [0.5, 1.0, 2.0]


def test_storage_errors_are_not_retried():
    op = _Flaky(failures=10, exc=StorageError)

    async def scenario():
        await RetryExecutor(max_attempts=3, base_delay=0.0).execute(op)

    with pytest.raises(StorageError):
        asyncio.run(scenario())
    assert op.calls == 1


def test_cancel_wakes_pending_wait():
    op = _Flaky(failures=10)

    async def scenario():
        executor = RetryExecutor(max_attempts=3, base_delay=30.0)
        task = asyncio.create_task(executor.execute(op))
        while op.calls == 0:
            await asyncio.sleep(0.01)
        executor.cancel()
        with pytest.raises(RetryCancelled):
            await asyncio.wait_for(task, timeout=2)
        assert executor.cancelled
        executor.reset()
        assert not executor.cancelled

    asyncio.run(scenario())
    assert op.calls == 1
