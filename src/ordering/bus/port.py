"""Event bus port — abstract interface for announcing order changes.

Subscribers (the storefront, admin dashboards, notification senders) learn
about status changes, refund requests and shipment stage outcomes through
the bus. Delivery is at-least-once; payloads always carry the order id.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable


class EventBus(ABC):
    """Abstract interface for event bus adapters."""

    @abstractmethod
    def publish(self, event_name: str, payload: dict) -> None:
        """Publish ``payload`` under ``event_name`` (e.g. ``order.status-changed``)."""
        ...

    @abstractmethod
    def subscribe(self, event_name: str, callback: Callable[[str, dict], None]) -> None:
        """Register ``callback`` for ``event_name``. Use ``*`` for all events."""
        ...
