"""Payment reconciliation — commands and handler.

Gateway webhooks (payment captured / payment failed) are routed to the order
through the gateway order id; admins confirm cash for COD orders. Every
inbound event carries the gateway's event id, which is persisted on the order
so a replay is reported as ``duplicate`` and changes nothing.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.exceptions import RetriableExternalError, TerminalExternalError
from ordering.gateway import get_gateway
from ordering.gateway.port import GatewayRejected, GatewayUnavailable
from ordering.order.order import Order

logger = structlog.get_logger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"


def call_gateway(operation: str, fn, *args, **kwargs):
    """Invoke the payment gateway, translating its failures into domain errors."""
    try:
        return fn(*args, **kwargs)
    except GatewayUnavailable as exc:
        logger.warning("Payment gateway unavailable", operation=operation, error=str(exc))
        raise RetriableExternalError({"gateway": [str(exc)]}, service="gateway") from exc
    except GatewayRejected as exc:
        logger.warning("Payment gateway rejected request", operation=operation, error=str(exc))
        raise TerminalExternalError({"gateway": [str(exc)]}, service="gateway") from exc


def _order_for_gateway_order(repo, gateway_order_id: str) -> Order:
    match = repo.find_by_gateway_order_id(gateway_order_id)
    if match is None:
        raise ObjectNotFoundError(f"No order found for gateway order {gateway_order_id}")
    return repo.get(match.id)


@ordering.command(part_of="Order")
class RecordGatewayPayment:
    event_id = String(required=True, max_length=255)
    gateway_order_id = String(required=True, max_length=255)
    gateway_payment_id = String(required=True, max_length=255)
    signature = String(max_length=512)


@ordering.command(part_of="Order")
class RecordGatewayPaymentFailure:
    event_id = String(required=True, max_length=255)
    gateway_order_id = String(required=True, max_length=255)
    reason = String(max_length=500)


@ordering.command(part_of="Order")
class ConfirmCodCollection:
    order_id = Identifier(required=True)


@ordering.command_handler(part_of=Order)
class PaymentReconciliationHandler:
    @handle(RecordGatewayPayment)
    def record_gateway_payment(self, command):
        if command.signature is not None:
            valid = get_gateway().verify_payment_signature(
                command.gateway_order_id, command.gateway_payment_id, command.signature
            )
            if not valid:
                logger.warning("Rejected payment with invalid signature", gateway_order_id=command.gateway_order_id)
                raise ValidationError({"signature": ["Payment signature verification failed"]})

        repo = current_domain.repository_for(Order)
        order = _order_for_gateway_order(repo, command.gateway_order_id)
        applied = order.record_gateway_payment(
            event_id=command.event_id,
            gateway_payment_id=command.gateway_payment_id,
            signature=command.signature,
        )
        if applied:
            repo.save(order)
            logger.info("Payment captured", order_id=str(order.id), gateway_payment_id=command.gateway_payment_id)
        return {"order_id": str(order.id), "status": PROCESSED if applied else DUPLICATE}

    @handle(RecordGatewayPaymentFailure)
    def record_gateway_payment_failure(self, command):
        repo = current_domain.repository_for(Order)
        order = _order_for_gateway_order(repo, command.gateway_order_id)
        applied = order.record_payment_failure(event_id=command.event_id, reason=command.reason)
        if applied:
            repo.save(order)
            logger.info("Payment failed", order_id=str(order.id), reason=command.reason)
        return {"order_id": str(order.id), "status": PROCESSED if applied else DUPLICATE}

    @handle(ConfirmCodCollection)
    def confirm_cod_collection(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        collected = order.confirm_cod_collection()
        if collected:
            repo.save(order)
        return {"order_id": str(order.id), "payment_status": order.payment.status}
