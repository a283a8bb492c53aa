"""
SyncReconciler: delivers locally committed orders to the order-management service and
applies the server's acknowledgments back onto LocalStore and OfflineQueue.

Delivery is at-least-once; the server merges by orderId. Network failures never reach
the caller: they turn into a "queued" outcome and the order waits for the next drain.
StorageError is the exception to that rule and always propagates.
"""

from typing import Optional

from pydantic import ValidationError

from ..app.errors import RetryCancelled
from ..app.logs import json_log
from ..app.models import BatchResult, CatalogSyncResult, Order, OrderAck, Product, StatusPushResult, SyncOutcome
from .http import BATCH_PATHS, NETWORK_ERRORS, ORDER_PATHS, ORDER_STATUS_PATHS, PRODUCT_PATHS, json_body, request_first

FALLBACK_KEEP_QUEUED = "keep_queued"
FALLBACK_DEQUEUE = "dequeue"


def _as_int(raw) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _ack_id(entry) -> Optional[str]:
    if isinstance(entry, dict):
        oid = entry.get("orderId") or entry.get("id")
    else:
        oid = entry
    s = str(oid).strip() if oid is not None else ""
    return s or None


def parse_batch_ack(order_ids, body, endpoint: Optional[str] = None) -> BatchResult:
    """
    Turn a batch response ({synced, orders: [{id|orderId}], storedInFallback?}) into one
    tagged ack per submitted order:
    - accepted: the id is listed under `orders` while `synced` is above zero, or is listed
      under `synced` when that is a list
    - stored_in_fallback: not accepted, and the server says it parked at least that many
      orders in its fallback store
    - rejected: anything else, including a partial fallback count we cannot attribute
    """
    body = body if isinstance(body, dict) else {}
    accepted = set()
    synced = body.get("synced")
    if isinstance(synced, list):
        for entry in synced:
            oid = _ack_id(entry)
            if oid:
                accepted.add(oid)
        synced_count = len(synced)
    else:
        synced_count = _as_int(synced)
    # `orders` only names delivered ids when the server reports synced > 0; with synced: 0
    # it lists what went to the fallback store.
    if synced_count > 0:
        for entry in body.get("orders") or []:
            oid = _ack_id(entry)
            if oid:
                accepted.add(oid)
    fallback_count = _as_int(body.get("storedInFallback"))

    ids = [str(i) for i in order_ids]
    unaccepted = [i for i in ids if i not in accepted]
    fallback_all = fallback_count > 0 and fallback_count >= len(unaccepted)
    acks = []
    for oid in ids:
        if oid in accepted:
            status = "accepted"
        elif fallback_all:
            status = "stored_in_fallback"
        else:
            status = "rejected"
        acks.append(OrderAck(order_id=oid, status=status))
    return BatchResult(
        delivered=True,
        acks=tuple(acks),
        synced_count=synced_count,
        stored_in_fallback_count=fallback_count,
        endpoint=endpoint,
    )


def _undelivered(order_ids, error: str) -> BatchResult:
    return BatchResult(
        delivered=False,
        acks=tuple(OrderAck(order_id=str(i), status="rejected") for i in order_ids),
        error=error,
    )


def _rows_from(body, key: str) -> list:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        rows = body.get(key)
        if isinstance(rows, list):
            return rows
    return []


class SyncReconciler:
    def __init__(self, store, queue, resolver, executor, client,
                 fallback_policy: str = FALLBACK_KEEP_QUEUED, request_timeout_s: Optional[float] = None,
                 queue_retention_s: float = 86400.0):
        if fallback_policy not in {FALLBACK_KEEP_QUEUED, FALLBACK_DEQUEUE}:
            raise ValueError(f"unknown fallback policy: {fallback_policy}")
        self.store = store
        self.queue = queue
        self.resolver = resolver
        self.executor = executor
        self.client = client
        self.fallback_policy = fallback_policy
        self.request_timeout_s = request_timeout_s
        self.queue_retention_s = queue_retention_s
        self._draining = False

    @property
    def draining(self) -> bool:
        return self._draining

    async def _post(self, base_url: str, templates, payload):
        url, resp = await request_first(
            self.client, "POST", base_url, templates, json=payload, timeout=self.request_timeout_s
        )
        return url, json_body(resp)

    # ---- single order ----

    async def sync_order(self, order: Order) -> SyncOutcome:
        """Deliver one order now, or queue it. Never raises for network trouble."""
        payload = order.to_payload()
        res = await self.resolver.resolve()
        if not res.connected:
            await self.queue.enqueue(payload)
            json_log("info", "sync.order.queued", order_id=order.order_id, reason="disconnected")
            return SyncOutcome(order_id=order.order_id, status="queued", error="disconnected")

        try:
            url, _body = await self.executor.execute(
                lambda: self._post(res.url, ORDER_PATHS, payload),
                label=f"order:{order.order_id}",
            )
        except RetryCancelled as ex:
            await self.queue.enqueue(payload)
            return SyncOutcome(order_id=order.order_id, status="queued", error=str(ex))
        except NETWORK_ERRORS as ex:
            self.resolver.invalidate()
            await self.queue.enqueue(payload)
            json_log("warning", "sync.order.queued", order_id=order.order_id, reason="delivery_failed", error=str(ex))
            return SyncOutcome(order_id=order.order_id, status="queued", error=str(ex))

        await self.store.mark_synced(order.local_key)
        # The order may have been queued by an earlier attempt.
        await self.queue.mark_synced([order.order_id])
        json_log("info", "sync.order.synced", order_id=order.order_id, url=url)
        return SyncOutcome(order_id=order.order_id, status="synced", endpoint=url)

    # ---- batch ----

    async def sync_batch(self, orders) -> BatchResult:
        """
        Post every given order in one request and apply the per-order acks. Accepted ids
        are marked synced in both LocalStore and OfflineQueue; everything else is (re)queued
        for the next cycle, so nothing is dropped and nothing accepted is resent.
        """
        payloads = [o.to_payload() if isinstance(o, Order) else dict(o) for o in (orders or [])]
        if not payloads:
            return BatchResult(delivered=True)
        ids = [str(p.get("orderId")) for p in payloads]

        res = await self.resolver.resolve()
        if not res.connected:
            result = _undelivered(ids, "disconnected")
        else:
            try:
                url, body = await self.executor.execute(
                    lambda: self._post(res.url, BATCH_PATHS, payloads),
                    label="batch",
                )
                result = parse_batch_ack(ids, body, endpoint=url)
            except RetryCancelled as ex:
                result = _undelivered(ids, str(ex))
            except NETWORK_ERRORS as ex:
                self.resolver.invalidate()
                result = _undelivered(ids, str(ex))

        await self._apply(result, payloads)
        json_log(
            "info" if result.delivered else "warning",
            "sync.batch.result",
            delivered=result.delivered,
            submitted=len(ids),
            accepted=len(result.accepted_ids),
            stored_in_fallback=len(result.ids("stored_in_fallback")),
            rejected=len(result.ids("rejected")),
            endpoint=result.endpoint,
            error=result.error,
        )
        return result

    async def _apply(self, result: BatchResult, payloads):
        delivered = list(result.accepted_ids)
        if self.fallback_policy == FALLBACK_DEQUEUE:
            delivered.extend(result.ids("stored_in_fallback"))
        if delivered:
            await self.store.mark_orders_synced(delivered)
            await self.queue.mark_synced(delivered)

        done = set(delivered)
        pending = [p for p in payloads if str(p.get("orderId")) not in done]
        for p in pending:
            await self.queue.enqueue(p)
        if pending:
            reason = result.error or ("stored_in_fallback" if result.ids("stored_in_fallback") else "not accepted")
            await self.queue.record_failure([p.get("orderId") for p in pending], reason)

    async def drain(self) -> Optional[BatchResult]:
        """One drain cycle over the whole queue. Returns None when a drain is already running."""
        if self._draining:
            json_log("info", "sync.drain.skipped", reason="already_draining")
            return None
        self._draining = True
        try:
            await self.queue.prune_synced(self.queue_retention_s)
            entries = await self.queue.get_queued()
            if not entries:
                return BatchResult(delivered=True)
            json_log("info", "sync.drain.start", queued=len(entries))
            return await self.sync_batch([e.payload for e in entries])
        finally:
            self._draining = False

    async def requeue_unsynced(self) -> int:
        """Queue every local unsynced order that has no pending delivery intent."""
        queued = await self.queue.queued_ids()
        added = 0
        for order in await self.store.list_unsynced_orders():
            if order.order_id in queued:
                continue
            await self.queue.enqueue(order.to_payload())
            added += 1
        if added:
            json_log("info", "sync.requeued", count=added)
        return added

    # ---- catalog ----

    async def sync_catalog(self, seed=None) -> CatalogSyncResult:
        """
        Replace the local catalog with the server's list. On any failure the local catalog
        stays as it is; on a first run with an empty catalog the seed list is stored instead.
        """
        error = "disconnected"
        res = await self.resolver.resolve()
        if res.connected:
            try:
                _url, resp = await self.executor.execute(
                    lambda: request_first(self.client, "GET", res.url, PRODUCT_PATHS, timeout=self.request_timeout_s),
                    label="catalog",
                )
                products = [Product.model_validate(p) for p in _rows_from(json_body(resp), "products")]
                if products:
                    await self.store.put_products(products, replace=True)
                    json_log("info", "sync.catalog.replaced", count=len(products), url=_url)
                    return CatalogSyncResult(ok=True, count=len(products), source="remote")
                error = "empty catalog"
            except RetryCancelled as ex:
                error = str(ex)
            except NETWORK_ERRORS as ex:
                self.resolver.invalidate()
                error = str(ex)
            except ValidationError as ex:
                error = f"invalid catalog: {ex.error_count()} errors"

        local = await self.store.get_products()
        if not local and seed:
            saved = await self.store.put_products(seed)
            json_log("warning", "sync.catalog.seeded", count=len(saved), error=error)
            return CatalogSyncResult(ok=False, count=len(saved), source="seed", error=error)
        json_log("warning", "sync.catalog.stale", count=len(local), error=error)
        return CatalogSyncResult(ok=False, count=len(local), source="local", error=error)

    # ---- order status / remote view ----

    async def push_order_status(self, order_id: str, status: str) -> StatusPushResult:
        """Apply the transition locally (authoritative), then tell the server if it is reachable."""
        order = await self.store.set_order_status(order_id, status)
        res = await self.resolver.resolve()
        if not res.connected:
            return StatusPushResult(order=order, remote_updated=False)
        try:
            await request_first(
                self.client, "PATCH", res.url, ORDER_STATUS_PATHS,
                json={"status": order.status}, timeout=self.request_timeout_s, order_id=order.order_id,
            )
        except NETWORK_ERRORS as ex:
            json_log("warning", "sync.status.failed", order_id=order.order_id, status=order.status, error=str(ex))
            return StatusPushResult(order=order, remote_updated=False)
        return StatusPushResult(order=order, remote_updated=True)

    async def pull_remote_orders(self) -> list[dict]:
        res = await self.resolver.resolve()
        if not res.connected:
            return []
        try:
            _url, resp = await request_first(self.client, "GET", res.url, ORDER_PATHS, timeout=self.request_timeout_s)
        except NETWORK_ERRORS as ex:
            json_log("warning", "sync.orders.pull_failed", error=str(ex))
            return []
        return [r for r in _rows_from(json_body(resp), "orders") if isinstance(r, dict)]
