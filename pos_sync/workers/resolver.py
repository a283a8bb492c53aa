import time
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from ..app.logs import json_log
from .http import HEALTH_PATH

Mode = Literal["online", "local", "localhost", "disconnected"]


class Endpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Mode
    url: str


class Resolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Mode
    url: Optional[str] = None
    cached: bool = False

    @property
    def connected(self) -> bool:
        return self.mode != "disconnected" and bool(self.url)


DISCONNECTED = Resolution(mode="disconnected")


class ServerResolver:
    """
    Picks the sync endpoint: remote first, then the local-network server, then development.
    The order is a fallback chain, not load balancing.

    The winner is cached for ttl_seconds. Each instance owns its cache, so tests and
    multiple stores in one process never share hidden state.
    """

    def __init__(self, candidates, client: httpx.AsyncClient, connectivity,
                 ttl_seconds: float = 5.0, probe_timeout_s: float = 2.0, clock=time.monotonic):
        self.candidates = [c if isinstance(c, Endpoint) else Endpoint(mode=c[0], url=c[1]) for c in candidates]
        self.client = client
        self.connectivity = connectivity
        self.ttl_seconds = float(ttl_seconds)
        self.probe_timeout_s = float(probe_timeout_s)
        self._clock = clock
        self._winner: Optional[Endpoint] = None
        self._checked_at = 0.0
        self.last: Resolution = DISCONNECTED

    async def probe(self, endpoint: Endpoint) -> bool:
        url = f"{endpoint.url.rstrip('/')}{HEALTH_PATH}"
        started = time.time()
        try:
            resp = await self.client.get(url, timeout=self.probe_timeout_s)
        except httpx.HTTPError as ex:
            json_log("info", "resolver.probe.failed", mode=endpoint.mode, url=url, error=str(ex),
                     latency_ms=int((time.time() - started) * 1000))
            return False
        ok = resp.status_code == 200
        json_log("info", "resolver.probe", mode=endpoint.mode, url=url, ok=ok, status_code=resp.status_code,
                 latency_ms=int((time.time() - started) * 1000))
        return ok

    def _fresh(self) -> bool:
        return self._winner is not None and (self._clock() - self._checked_at) < self.ttl_seconds

    async def resolve(self) -> Resolution:
        if not self.connectivity.online:
            # Probing while offline only adds latency.
            self.last = DISCONNECTED
            return DISCONNECTED
        if self._fresh():
            return Resolution(mode=self._winner.mode, url=self._winner.url, cached=True)

        for ep in self.candidates:
            if await self.probe(ep):
                self._winner = ep
                self._checked_at = self._clock()
                self.last = Resolution(mode=ep.mode, url=ep.url)
                json_log("info", "resolver.selected", mode=ep.mode, url=ep.url)
                return self.last

        self._winner = None
        self._checked_at = 0.0
        self.last = DISCONNECTED
        json_log("warning", "resolver.unreachable", candidates=[ep.url for ep in self.candidates])
        return DISCONNECTED

    def invalidate(self):
        self._winner = None
        self._checked_at = 0.0
