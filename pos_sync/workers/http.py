"""
Outbound HTTP helpers for the sync workers.

Servers in the field expose the same routes under two path forms (`/api/...` on the
cloud deployment, bare paths on the local hotspot server), so every call takes an ordered
tuple of path templates and `request_first` walks them in one loop.
"""

import httpx

from ..app.errors import DeliveryError
from ..app.logs import json_log

HEALTH_PATH = "/health"
ORDER_PATHS = ("/api/orders", "/orders")
BATCH_PATHS = ("/api/sync/batch", "/sync/batch")
PRODUCT_PATHS = ("/api/products", "/products")
ORDER_STATUS_PATHS = ("/api/orders/{order_id}/status", "/orders/{order_id}/status")

# "This path form does not exist here": try the next template instead of failing.
NEXT_TEMPLATE_STATUSES = frozenset({404, 405})

NETWORK_ERRORS = (DeliveryError, httpx.HTTPError)


def build_client(timeout_s: float = 10.0, transport=None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(max(0.2, float(timeout_s or 10.0))),
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        transport=transport,
    )


def json_body(resp: httpx.Response):
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text[:1000]}


async def request_first(client: httpx.AsyncClient, method: str, base_url: str, templates, *,
                        json=None, timeout=None, **path_params) -> tuple[str, httpx.Response]:
    """
    Try each template against base_url in order and return (url, response) for the first
    2xx answer. Transport errors and 404/405 move on to the next template; any other
    non-2xx status is a delivery failure right away.
    """
    base = (base_url or "").strip().rstrip("/")
    if not base:
        raise DeliveryError("missing base url")
    last_error = None
    for template in templates:
        url = base + template.format(**path_params)
        try:
            kwargs = {"json": json}
            if timeout is not None:
                kwargs["timeout"] = timeout
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as ex:
            last_error = DeliveryError(f"{method} {url}: {type(ex).__name__}: {ex}", url=url)
            json_log("warning", "http.template.unreachable", method=method, url=url, error=str(ex))
            continue
        if resp.status_code in NEXT_TEMPLATE_STATUSES:
            last_error = DeliveryError(f"http {resp.status_code}", status_code=resp.status_code, url=url)
            json_log("info", "http.template.missing", method=method, url=url, status_code=resp.status_code)
            continue
        if not resp.is_success:
            msg = f"http {resp.status_code}"
            body = resp.text[:1000] if resp.content else ""
            if body:
                msg = f"{msg}: {body}"
            raise DeliveryError(msg, status_code=resp.status_code, url=url)
        return url, resp
    raise last_error or DeliveryError("no endpoint templates")
