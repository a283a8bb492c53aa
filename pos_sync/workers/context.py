from dataclasses import dataclass
from typing import Optional

import httpx

from ..app.config import Settings
from ..app.logs import json_log
from ..app.store import LocalStore
from .connectivity import ConnectivityMonitor
from .http import build_client
from .offline_queue import OfflineQueue
from .reconciler import SyncReconciler
from .resolver import ServerResolver
from .retry import RetryExecutor
from .triggers import SyncTrigger


@dataclass
class SyncContext:
    settings: Settings
    store: LocalStore
    queue: OfflineQueue
    connectivity: ConnectivityMonitor
    client: httpx.AsyncClient
    resolver: ServerResolver
    executor: RetryExecutor
    reconciler: SyncReconciler
    trigger: SyncTrigger

    async def on_signal(self, reason: str):
        self.resolver.invalidate()
        await self.reconciler.drain()

    async def close(self):
        # Stop timers first so nothing mutates state after teardown.
        self.executor.cancel()
        try:
            await self.trigger.stop()
        finally:
            await self.client.aclose()
        json_log("info", "context.closed", db_path=self.settings.db_path)


async def build_context(settings: Settings, transport=None, connectivity: Optional[ConnectivityMonitor] = None,
                        sleep=None) -> SyncContext:
    store = LocalStore(settings.db_path, order_id_max_attempts=settings.order_id_max_attempts)
    await store.init()
    queue = OfflineQueue(settings.db_path)
    connectivity = connectivity or ConnectivityMonitor(online=True)
    client = build_client(settings.request_timeout_seconds, transport=transport)
    resolver = ServerResolver(
        settings.candidates(),
        client,
        connectivity,
        ttl_seconds=settings.resolver_ttl_seconds,
        probe_timeout_s=settings.probe_timeout_seconds,
    )
    executor = RetryExecutor(settings.retry_max_attempts, settings.retry_base_delay_seconds, sleep=sleep)
    reconciler = SyncReconciler(
        store,
        queue,
        resolver,
        executor,
        client,
        fallback_policy=settings.fallback_policy,
        request_timeout_s=settings.request_timeout_seconds,
        queue_retention_s=settings.queue_retention_seconds,
    )
    ctx = SyncContext(
        settings=settings,
        store=store,
        queue=queue,
        connectivity=connectivity,
        client=client,
        resolver=resolver,
        executor=executor,
        reconciler=reconciler,
        trigger=None,
    )
    ctx.trigger = SyncTrigger(connectivity, ctx.on_signal, interval_seconds=settings.drain_interval_seconds)
    json_log("info", "context.ready", db_path=settings.db_path, candidates=[u for _m, u in settings.candidates()])
    return ctx
