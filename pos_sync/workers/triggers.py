import asyncio
from typing import Optional

from ..app.errors import StorageError
from ..app.logs import json_log


class SyncTrigger:
    """
    The one subscription that redrives delivery. Both sources (a connectivity-restored
    transition and the periodic timer while online) set the same wake event, so bursts
    coalesce into a single "re-resolve + drain" call and two drains never overlap.
    """

    def __init__(self, connectivity, on_signal, interval_seconds: float = 30.0):
        self.connectivity = connectivity
        self.on_signal = on_signal
        self.interval_seconds = max(0.01, float(interval_seconds))
        self._wake = asyncio.Event()
        self._reason = "startup"
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = None
        self.signals = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, immediate: bool = True):
        if self.running:
            return
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity)
        if immediate:
            self.poke("startup")
        self._task = asyncio.create_task(self._run(), name="pos-sync-trigger")

    def poke(self, reason: str = "manual"):
        self._reason = reason
        self._wake.set()

    def _on_connectivity(self, online: bool):
        if online:
            self.poke("connectivity")

    async def _run(self):
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
                reason = self._reason
            except asyncio.TimeoutError:
                reason = "timer"
            self._wake.clear()
            if not self.connectivity.online:
                continue
            self.signals += 1
            try:
                await self.on_signal(reason)
            except StorageError as ex:
                json_log("error", "trigger.storage.error", reason=reason, error=str(ex))
                raise
            except Exception as ex:
                # Never let one bad cycle stop future drains.
                json_log("error", "trigger.signal.error", reason=reason, error=str(ex))

    async def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._task = self._task, None
        if task is None:
            return
        if task.done():
            # Already ended on a fatal error; whoever awaited wait() has seen it.
            if not task.cancelled() and task.exception() is not None:
                json_log("error", "trigger.stopped.failed", error=str(task.exception()))
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except StorageError as ex:
            json_log("error", "trigger.stopped.failed", error=str(ex))

    async def wait(self):
        # Blocks until the trigger task ends; a StorageError inside it is re-raised here.
        if self._task is not None:
            await self._task
