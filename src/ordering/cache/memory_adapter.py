"""In-process read cache keyed by order id."""

import threading

from ordering.cache.port import ReadCache


class InMemoryReadCache(ReadCache):
    def __init__(self) -> None:
        self._entries: dict[str, dict] = {}
        self._floors: dict[str, int] = {}
        self._lock = threading.Lock()
        self.invalidations: list[str] = []

    def get(self, order_id: str) -> dict | None:
        with self._lock:
            return self._entries.get(order_id)

    def set(self, order_id: str, value: dict) -> bool:
        with self._lock:
            if (value.get("version") or 0) < self._floors.get(order_id, 0):
                return False
            self._entries[order_id] = value
            return True

    def invalidate(self, order_id: str, version: int | None = None) -> None:
        with self._lock:
            self._entries.pop(order_id, None)
            if version is not None:
                self._floors[order_id] = max(version, self._floors.get(order_id, 0))
            self.invalidations.append(order_id)
