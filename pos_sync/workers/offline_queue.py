import asyncio
import json
from datetime import datetime, timedelta, timezone

from ..app.db import db_connect, run_db
from ..app.logs import json_log
from ..app.models import QueueEntry


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_entry(r) -> QueueEntry:
    return QueueEntry(
        order_id=r["order_id"],
        payload=json.loads(r["payload_json"]),
        enqueued_at=r["enqueued_at"],
        attempt_count=r["attempt_count"],
        last_attempt_at=r["last_attempt_at"],
        last_error=r["last_error"],
    )


def _clean_ids(ids) -> list[str]:
    out = []
    for i in ids or []:
        s = str(i or "").strip()
        if s and s not in out:
            out.append(s)
    return out


class OfflineQueue:
    """
    Durable delivery intents, keyed by order_id. This tracks "still has to reach the
    server", not order existence: LocalStore keeps the Order either way.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = asyncio.Lock()

    async def enqueue(self, payload: dict) -> QueueEntry:
        order_id = str((payload or {}).get("orderId") or "").strip()
        if not order_id:
            raise ValueError("payload.orderId is required")

        def _tx():
            now = _now_iso()
            with db_connect(self.db_path, write=True) as conn:
                # Re-enqueueing the same order refreshes the payload instead of duplicating it.
                conn.execute(
                    """
                    INSERT INTO offline_queue (order_id, payload_json, status, enqueued_at)
                    VALUES (?, ?, 'queued', ?)
                    ON CONFLICT(order_id) DO UPDATE SET
                      payload_json=excluded.payload_json,
                      status='queued',
                      synced_at=NULL
                    """,
                    (order_id, json.dumps(payload), now),
                )
                row = conn.execute("SELECT * FROM offline_queue WHERE order_id = ?", (order_id,)).fetchone()
                return _row_to_entry(row)

        async with self._lock:
            entry = await run_db(_tx)
        json_log("info", "queue.enqueued", order_id=order_id)
        return entry

    async def get_queued(self) -> list[QueueEntry]:
        def _q():
            with db_connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM offline_queue WHERE status = 'queued' ORDER BY enqueued_at ASC, order_id ASC"
                ).fetchall()
                return [_row_to_entry(r) for r in rows]

        return await run_db(_q)

    async def queued_ids(self) -> set[str]:
        return {e.order_id for e in await self.get_queued()}

    async def count(self) -> int:
        def _q():
            with db_connect(self.db_path) as conn:
                row = conn.execute("SELECT COUNT(1) FROM offline_queue WHERE status = 'queued'").fetchone()
                return int(row[0] if row else 0)

        return await run_db(_q)

    async def mark_synced(self, ids) -> int:
        """Flag entries as delivered. Idempotent: ids already flagged or unknown are no-ops."""
        ids = _clean_ids(ids)
        if not ids:
            return 0

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                cur = conn.execute(
                    "UPDATE offline_queue SET status = 'synced', synced_at = ? WHERE status = 'queued' AND order_id IN (%s)"
                    % ",".join(["?"] * len(ids)),
                    (_now_iso(), *ids),
                )
                return cur.rowcount

        async with self._lock:
            changed = await run_db(_tx)
        if changed:
            json_log("info", "queue.synced", count=changed)
        return changed

    async def prune_synced(self, older_than_s: float) -> int:
        """Delete delivered entries whose synced_at is older than `older_than_s` seconds."""
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=max(0.0, float(older_than_s)))).isoformat()

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                cur = conn.execute(
                    "DELETE FROM offline_queue WHERE status = 'synced' AND synced_at IS NOT NULL AND synced_at <= ?",
                    (cutoff,),
                )
                return cur.rowcount

        async with self._lock:
            removed = await run_db(_tx)
        if removed:
            json_log("info", "queue.pruned", count=removed)
        return removed

    async def record_failure(self, ids, error: str) -> int:
        ids = _clean_ids(ids)
        if not ids:
            return 0

        def _tx():
            with db_connect(self.db_path, write=True) as conn:
                cur = conn.execute(
                    """
                    UPDATE offline_queue
                    SET attempt_count = attempt_count + 1, last_attempt_at = ?, last_error = ?
                    WHERE status = 'queued' AND order_id IN (%s)
                    """ % ",".join(["?"] * len(ids)),
                    (_now_iso(), str(error or "")[:1000], *ids),
                )
                return cur.rowcount

        async with self._lock:
            return await run_db(_tx)
