"""Read cache port — abstract interface for caching order read models.

Nothing correctness-bearing is cached: every mutating write invalidates the
entry for the order it touched and raises the order's version floor. A read
model older than the floor is never stored, so a reader that raced a write
cannot put the pre-write view back into the cache.
"""

from abc import ABC, abstractmethod


class ReadCache(ABC):
    """Abstract interface for read cache adapters."""

    @abstractmethod
    def get(self, order_id: str) -> dict | None:
        """Return the cached read model for an order, or None."""
        ...

    @abstractmethod
    def set(self, order_id: str, value: dict) -> bool:
        """Cache the read model for an order unless it is older than the version floor.

        Returns whether the value was stored.
        """
        ...

    @abstractmethod
    def invalidate(self, order_id: str, version: int | None = None) -> None:
        """Drop the cached read model for an order.

        ``version`` is the version being written; read models below it are
        refused from then on.
        """
        ...
