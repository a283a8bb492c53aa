import secrets

from .errors import OrderIdExhaustedError
from .logs import json_log

ORDER_ID_LOW = 1000
ORDER_ID_HIGH = 9999
ORDER_ID_MAX_ATTEMPTS = 100


class OrderIdAllocator:
    """
    Short, human-facing order numbers ("4821") drawn uniformly from [low, high].

    Uniqueness is checked against the store's order_id index through `exists`, an async
    callable. Ids handed out but not yet persisted stay reserved in-process until
    `release()`, so two overlapping allocations never return the same number.

    Collision bound: with n orders persisted out of N = high - low + 1 ids, one draw
    collides with probability p = n / N and the expected number of draws is 1 / (1 - p).
    For the default 9000-id space that is ~1.1 draws at 1000 stored orders and ~10 draws
    at 8100. The attempt cap turns a saturated id space into OrderIdExhaustedError instead
    of an endless loop: at n = 8000 the chance of 100 consecutive collisions is ~8e-6.
    Deployments that keep more than a few thousand orders locally should widen the range.
    """

    def __init__(self, exists, low: int = ORDER_ID_LOW, high: int = ORDER_ID_HIGH,
                 max_attempts: int = ORDER_ID_MAX_ATTEMPTS, rng=None):
        if high < low:
            raise ValueError("high must be >= low")
        self._exists = exists
        self.low = int(low)
        self.high = int(high)
        self.max_attempts = max(1, int(max_attempts))
        self._rng = rng or secrets.SystemRandom()
        self._reserved: set[str] = set()

    @property
    def space(self) -> int:
        return self.high - self.low + 1

    def _draw(self) -> str:
        return str(self._rng.randint(self.low, self.high))

    async def allocate(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._draw()
            if candidate in self._reserved:
                continue
            # Reserve before awaiting the index lookup; a concurrent allocate() must not
            # pick the same candidate while this one is suspended.
            self._reserved.add(candidate)
            try:
                taken = await self._exists(candidate)
            except BaseException:
                self._reserved.discard(candidate)
                raise
            if not taken:
                if attempt > 1:
                    json_log("info", "order_id.collisions", attempts=attempt, order_id=candidate)
                return candidate
            self._reserved.discard(candidate)
        json_log("error", "order_id.exhausted", attempts=self.max_attempts, space=self.space)
        raise OrderIdExhaustedError(self.max_attempts)

    def release(self, order_id: str):
        self._reserved.discard(str(order_id))
