#!/usr/bin/env python3
"""
Long-running sync worker for one POS client database.

Startup: initialise the local schema, queue any unsynced order that lost its delivery
intent (e.g. the process died right after commit), refresh the catalog, then keep
draining the offline queue on connectivity changes and on the periodic timer.
"""

import argparse
import asyncio
import json
import os
import signal
import sys

try:
    from ..app.config import Settings, load_config
    from ..app.db import init_db
    from ..app.logs import json_log
    from .connectivity import ConnectivityMonitor
    from .context import build_context
except ImportError:  # pragma: no cover
    # Allow running as a script: `python3 pos_sync/workers/sync_service.py`
    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))
    from pos_sync.app.config import Settings, load_config
    from pos_sync.app.db import init_db
    from pos_sync.app.logs import json_log
    from pos_sync.workers.connectivity import ConnectivityMonitor
    from pos_sync.workers.context import build_context


def load_seed(path: str) -> list:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("products") or []
    return list(data or [])


async def run_service(settings: Settings, once: bool = False, seed=None, online: bool = True) -> dict:
    ctx = await build_context(settings, connectivity=ConnectivityMonitor(online=online))
    try:
        requeued = await ctx.reconciler.requeue_unsynced()
        catalog = await ctx.reconciler.sync_catalog(seed=seed)
        if once:
            result = await ctx.reconciler.drain()
            summary = {
                "requeued": requeued,
                "catalog": catalog.model_dump(),
                "drain": result.model_dump() if result else None,
                "queued": await ctx.queue.count(),
            }
            json_log("info", "service.once", **summary)
            return summary

        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                pass
        ctx.trigger.start()
        json_log("info", "service.started", interval_s=settings.drain_interval_seconds, queued=await ctx.queue.count())
        waiter = asyncio.create_task(stop.wait())
        trigger_task = asyncio.create_task(ctx.trigger.wait())
        done, _pending = await asyncio.wait({waiter, trigger_task}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        if trigger_task in done:
            # The trigger only ends on a fatal (storage) error; surface it.
            trigger_task.result()
        return {"requeued": requeued, "catalog": catalog.model_dump()}
    finally:
        await ctx.close()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default=os.environ.get("POS_CONFIG_PATH"), help="Optional JSON config file")
    parser.add_argument("--db", default=None, help="SQLite DB path (overrides config/POS_DB_PATH)")
    parser.add_argument("--init-db", action="store_true", help="Initialize local SQLite schema and exit")
    parser.add_argument("--seed", default=None, help="JSON product list used when the catalog cannot be pulled on first run")
    parser.add_argument("--once", action="store_true", help="Run a single drain pass and exit")
    parser.add_argument("--offline", action="store_true", help="Start with the connectivity signal reporting offline")
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.db:
        cfg["db_path"] = args.db
    settings = Settings(cfg)

    if args.init_db:
        init_db(settings.db_path)
        print("ok")
        return

    seed = load_seed(args.seed) if args.seed else None
    summary = asyncio.run(run_service(settings, once=args.once, seed=seed, online=not args.offline))
    if args.once:
        print(json.dumps(summary, default=str))


if __name__ == "__main__":
    main()
