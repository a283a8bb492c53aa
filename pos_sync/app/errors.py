class PosSyncError(Exception):
    """Base class for every error raised by pos_sync."""


class EmptyCartError(PosSyncError):
    def __init__(self, message: str = "cart is empty"):
        super().__init__(message)


class NotFoundError(PosSyncError):
    def __init__(self, what: str, key):
        self.what = what
        self.key = key
        super().__init__(f"{what} not found: {key}")


class InvalidTransitionError(PosSyncError):
    def __init__(self, order_id: str, current: str, target: str):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(f"order {order_id}: cannot move from {current} to {target}")


class StorageError(PosSyncError):
    """
    The local durable store failed. There is no safe fallback for this: callers must let it
    propagate, since no ordering or durability guarantee holds without the local write path.
    """


class OrderIdExhaustedError(StorageError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"no free order id after {attempts} attempts")


class DeliveryError(PosSyncError):
    """A network-layer failure: transport error, timeout, or non-2xx response."""

    def __init__(self, message: str, status_code=None, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class RetryCancelled(PosSyncError):
    pass
