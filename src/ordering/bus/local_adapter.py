"""In-process event bus for development and testing.

Keeps every published message in ``published`` so tests can assert on what
was announced, and fans messages out to local subscribers. A failing
subscriber is logged and never breaks the publisher.
"""

import threading
from collections import defaultdict
from collections.abc import Callable

import structlog

from ordering.bus.port import EventBus

logger = structlog.get_logger(__name__)


class LocalEventBus(EventBus):
    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []
        self._subscribers: dict[str, list[Callable[[str, dict], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish(self, event_name: str, payload: dict) -> None:
        with self._lock:
            self.published.append((event_name, payload))
            callbacks = list(self._subscribers[event_name]) + list(self._subscribers["*"])

        for callback in callbacks:
            try:
                callback(event_name, payload)
            except Exception as exc:
                logger.error(
                    "Event bus subscriber failed",
                    event_name=event_name,
                    order_id=payload.get("order_id"),
                    error=str(exc),
                )

    def subscribe(self, event_name: str, callback: Callable[[str, dict], None]) -> None:
        with self._lock:
            self._subscribers[event_name].append(callback)

    def messages(self, event_name: str) -> list[dict]:
        """Return payloads published under ``event_name``."""
        return [payload for name, payload in self.published if name == event_name]
