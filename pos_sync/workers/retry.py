import asyncio

from ..app.errors import RetryCancelled
from ..app.logs import json_log
from .http import NETWORK_ERRORS


class RetryExecutor:
    """
    Bounded exponential backoff: attempt n+1 starts base_delay * 2**(n-1) seconds after
    attempt n fails. With max_attempts=3, base_delay=1.0 the attempts run at ~0s, ~1s and
    ~3s, then the last failure is re-raised.

    cancel() wakes any pending wait and makes it raise RetryCancelled, so a caller that is
    being torn down never gets a late completion. Only `retry_on` errors are retried;
    anything else (StorageError included) propagates on the first occurrence.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0, retry_on=NETWORK_ERRORS, sleep=None):
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = max(0.0, float(base_delay))
        self.retry_on = retry_on
        self._sleep = sleep
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        self._cancelled.set()

    def reset(self):
        self._cancelled.clear()

    def delay_for(self, attempt: int, base_delay=None) -> float:
        base = self.base_delay if base_delay is None else float(base_delay)
        return base * (2 ** (attempt - 1))

    async def _wait(self, delay: float):
        if self._sleep is not None:
            await self._sleep(delay)
        else:
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        if self._cancelled.is_set():
            raise RetryCancelled("retry cancelled")

    async def execute(self, operation, max_attempts=None, base_delay=None, label: str = "operation"):
        attempts = self.max_attempts if max_attempts is None else max(1, int(max_attempts))
        last_error = None
        for attempt in range(1, attempts + 1):
            if self._cancelled.is_set():
                raise RetryCancelled("retry cancelled")
            try:
                return await operation()
            except self.retry_on as ex:
                last_error = ex
                if attempt >= attempts:
                    break
                delay = self.delay_for(attempt, base_delay)
                json_log("warning", "retry.scheduled", label=label, attempt=attempt, of=attempts,
                         delay_s=delay, error=str(ex))
                await self._wait(delay)
        json_log("warning", "retry.exhausted", label=label, attempts=attempts, error=str(last_error))
        raise last_error
