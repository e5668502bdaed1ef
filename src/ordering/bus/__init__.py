"""Event bus factory.

Provides get_event_bus() / set_event_bus() / reset_event_bus() to swap
implementations. Defaults to the in-process LocalEventBus.
"""

from ordering.bus.port import EventBus

_current_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Return the current event bus. Defaults to LocalEventBus."""
    global _current_bus
    if _current_bus is None:
        from ordering.bus.local_adapter import LocalEventBus

        _current_bus = LocalEventBus()
    return _current_bus


def set_event_bus(bus: EventBus) -> None:
    """Override the active event bus (useful for tests)."""
    global _current_bus
    _current_bus = bus


def reset_event_bus() -> None:
    """Reset to the default event bus."""
    global _current_bus
    _current_bus = None
