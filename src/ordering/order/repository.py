"""Repository for the Order aggregate.

Adds optimistic concurrency on top of the standard CRUD operations: every
write compares the version the caller loaded against the stored version and
fails with ConflictError when another writer got there first. Successful
writes bump the version and drop the order from the read cache.
"""

from protean.exceptions import ExpectedVersionError

from ordering.cache import get_read_cache
from ordering.domain import ordering
from ordering.exceptions import ConflictError
from ordering.order.order import Order


@ordering.repository(part_of=Order)
class OrderRepository:
    def stored_version(self, order_id: str) -> int | None:
        """Return the committed version of an order, or None if it was never saved."""
        record = self._dao.query.filter(id=str(order_id)).all().first
        return record.version if record is not None else None

    def load(self, order_id: str, expected_version: int | None = None) -> Order:
        """Load an order, failing fast when the caller's view is stale."""
        order = self.get(order_id)
        if expected_version is not None and order.version != expected_version:
            raise ConflictError(
                {"version": [f"Order was modified (expected version {expected_version}, found {order.version})"]}
            )
        return order

    def save(self, order: Order) -> Order:
        """Persist ``order`` if nobody else wrote it since it was loaded."""
        stored = self.stored_version(order.id)
        if stored is not None and stored != order.version:
            raise ConflictError(
                {"version": [f"Order was modified concurrently (loaded version {order.version}, stored {stored})"]}
            )
        order.version = (order.version or 0) + 1
        try:
            self.add(order)
        except ExpectedVersionError as exc:
            raise ConflictError({"version": ["Order was modified concurrently"]}) from exc
        get_read_cache().invalidate(str(order.id), order.version)
        return order

    def find_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        """Find the order a gateway order id was issued for."""
        return self._dao.query.filter(gateway_order_id=gateway_order_id).all().first

    def find_by_shipping_link_id(self, link_id: str) -> Order | None:
        """Find the order a shipping payment link was issued for."""
        return self._dao.query.filter(shipping_link_id=link_id).all().first

    def find_by_awb(self, awb_code: str) -> Order | None:
        """Find the order a carrier AWB belongs to."""
        return self._dao.query.filter(awb_code=awb_code.strip().upper()).all().first
