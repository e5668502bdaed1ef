"""Ordering bounded context — Order Lifecycle and Shipment Fulfillment.

Drives a placed order through its business states, reconciles the order
status against the payment status, and coordinates the multi-stage carrier
integration (shipment, AWB, pickup, documents, tracking) together with the
extra shipping-cost collection workflow. Uses CQRS: the Order aggregate is
persisted as current state, guarded by a version token.
"""

import structlog
from protean.domain import Domain
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from ordering.exceptions import ConflictError

ordering = Domain(name="ordering")

logger = structlog.get_logger(__name__)


def process(command):
    """Process a command synchronously and return the handler's result.

    The unit of work commits after the handler returns, so a write that lost
    the race to another writer of the same order only surfaces here. It is
    reported as ConflictError; the caller re-reads and retries.
    """
    try:
        return current_domain.process(command, asynchronous=False)
    except ExpectedVersionError as exc:
        logger.info("Lost write race", command=command.__class__.__name__)
        raise ConflictError({"version": ["Order was modified concurrently, re-read and retry"]}) from exc
