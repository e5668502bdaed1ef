"""Order lifecycle — commands and handler.

Accept, advance, cancel and the audited override. Each command takes an
optional ``expected_version``; when given, an order that has moved on since
the caller read it fails with ConflictError before anything is changed.
"""

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.order import Order
from ordering.policy import get_policy

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class AcceptOrder:
    order_id = Identifier(required=True)
    expected_version = Integer(min_value=0)


@ordering.command(part_of="Order")
class AdvanceOrder:
    order_id = Identifier(required=True)
    expected_version = Integer(min_value=0)


@ordering.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    cancelled_by = String(max_length=255)
    expected_version = Integer(min_value=0)


@ordering.command(part_of="Order")
class OverrideOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=20)
    justification = String(required=True, max_length=1000)
    actor = String(required=True, max_length=255)
    expected_version = Integer(min_value=0)


def _summary(order: Order) -> dict:
    return {
        "order_id": str(order.id),
        "status": order.status,
        "payment_status": order.payment.status if order.payment else None,
        "version": order.version,
    }


@ordering.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(AcceptOrder)
    def accept_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.load(command.order_id, command.expected_version)
        order.accept()
        repo.save(order)
        return _summary(order)

    @handle(AdvanceOrder)
    def advance_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.load(command.order_id, command.expected_version)
        policy = get_policy()
        order.advance(
            block_delivery_until_paid=policy.block_delivery_until_paid,
            cod_auto_collect_on_delivery=policy.cod_auto_collect_on_delivery,
        )
        repo.save(order)
        return _summary(order)

    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.load(command.order_id, command.expected_version)
        order.cancel(reason=command.reason, cancelled_by=command.cancelled_by)
        repo.save(order)
        logger.info("Order cancelled", order_id=str(order.id), payment_status=order.payment.status)
        return _summary(order)

    @handle(OverrideOrderStatus)
    def override_order_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.load(command.order_id, command.expected_version)
        from_status = order.status
        changed = order.override_status(
            target=command.status,
            justification=command.justification,
            actor=command.actor,
        )
        repo.save(order)
        logger.warning(
            "Order status overridden",
            order_id=str(order.id),
            from_status=from_status,
            to_status=command.status,
            actor=command.actor,
            justification=command.justification,
            changed=changed,
        )
        return _summary(order)
