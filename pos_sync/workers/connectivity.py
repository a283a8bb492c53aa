from ..app.logs import json_log


class ConnectivityMonitor:
    """
    The runtime's binary online/offline signal. Whatever owns the network stack (OS hook,
    UI shell, a test) calls set_online(); subscribers hear about transitions only.
    """

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._subscribers = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> bool:
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        json_log("info", "connectivity.changed", online=online)
        for cb in list(self._subscribers):
            cb(online)
        return True

    def subscribe(self, callback):
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe
