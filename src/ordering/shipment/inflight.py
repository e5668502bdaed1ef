"""In-flight registry for shipment stages and the shipping payment link.

A slot is keyed by ``(order_id, stage)``. Claiming a key that is already
claimed raises IdempotencyViolation, so a double-clicked "Assign AWB" cannot
reach the carrier twice and a second "Send link" cannot reach the gateway
before the first link is stored. The registry is process-local; the version
check in OrderRepository.save still protects the write when several
processes run.
"""

import threading
from contextlib import contextmanager
from datetime import UTC, datetime

from ordering.exceptions import IdempotencyViolation


class InFlightRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claims: dict[tuple[str, str], datetime] = {}

    def claim(self, order_id: str, stage: str) -> None:
        key = (str(order_id), stage)
        with self._lock:
            if key in self._claims:
                raise IdempotencyViolation({"stage": [f"{stage} is already in progress for order {order_id}"]})
            self._claims[key] = datetime.now(UTC)

    def release(self, order_id: str, stage: str) -> None:
        with self._lock:
            self._claims.pop((str(order_id), stage), None)

    def in_flight(self, order_id: str) -> list[str]:
        """Stages currently running for an order."""
        with self._lock:
            return sorted(stage for (claimed_order, stage) in self._claims if claimed_order == str(order_id))

    @contextmanager
    def hold(self, order_id: str, stage: str):
        self.claim(order_id, stage)
        try:
            yield
        finally:
            self.release(order_id, stage)

    def clear(self) -> None:
        with self._lock:
            self._claims.clear()


stage_registry = InFlightRegistry()
