import json

import httpx

from pos_sync.app.config import DEFAULT_CONFIG, Settings

CLOUD = "http://cloud.test"
HOTSPOT = "http://hotspot.test"
DEV = "http://dev.test"

MENU = [
    {"id": "p1", "name": "Zinger Burger", "price": 550, "category": "burgers", "image": "burger", "available": True},
    {"id": "p8", "name": "French Fries", "price": 180, "category": "sides", "image": "fries", "available": True},
    {"id": "p10", "name": "Pepsi", "price": 120, "category": "drinks", "image": "cola", "available": True},
]


class FakeServer:
    """
    In-memory stand-in for the three sync endpoints. Hosts listed in `healthy` answer
    /health with 200 and serve `routes`; every other host refuses connections.
    """

    def __init__(self, healthy=("cloud.test",)):
        self.healthy = set(healthy)
        self.requests = []
        self.routes = {}

    def route(self, method: str, path: str, responder):
        self.routes[(method, path)] = responder

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host not in self.healthy:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": True})
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"detail": "not found"})
        if callable(responder):
            return responder(request)
        return responder

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def paths(self, method=None):
        return [r.url.path for r in self.requests if method is None or r.method == method]

    def probes(self):
        return [r for r in self.requests if r.url.path == "/health"]

    def bodies(self, path: str):
        return [json.loads(r.content) for r in self.requests if r.url.path == path and r.content]


def make_settings(db_path: str, **overrides) -> Settings:
    cfg = dict(DEFAULT_CONFIG)
    cfg.update(
        db_path=db_path,
        cloud_server=CLOUD,
        local_server=HOTSPOT,
        dev_server=DEV,
        retry_base_delay_seconds=0.0,
        background_sync=False,
    )
    cfg.update(overrides)
    return Settings(cfg)


async def no_sleep(_delay):
    return None
