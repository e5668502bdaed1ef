"""Order placement — command and handler."""

import json

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.gateway import get_gateway
from ordering.order.order import Order, PaymentMethod
from ordering.order.payment import call_gateway

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class PlaceOrder:
    customer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of item dicts
    shipping_address = Text(required=True)  # JSON: address dict
    billing_address = Text()  # JSON: address dict
    payment_method = String(required=True, max_length=20)
    subtotal = Integer(min_value=0)
    tax = Integer(min_value=0, default=0)
    shipping = Integer(min_value=0, default=0)
    total = Integer(min_value=0)
    currency = String(max_length=3, default="INR")
    order_number = String(max_length=50)


def _decode(value):
    return json.loads(value) if isinstance(value, str) else value


@ordering.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        order = Order.place(
            customer_id=command.customer_id,
            items_data=_decode(command.items),
            shipping_address=_decode(command.shipping_address),
            billing_address=_decode(command.billing_address) if command.billing_address else None,
            payment_method=command.payment_method,
            subtotal=command.subtotal,
            tax=command.tax or 0,
            shipping=command.shipping or 0,
            total=command.total,
            currency=command.currency or "INR",
            order_number=command.order_number,
        )

        if command.payment_method == PaymentMethod.PREPAID.value:
            gateway_order = call_gateway(
                "create_order",
                get_gateway().create_order,
                order.total,
                order.currency,
                order.order_number,
            )
            order.attach_gateway_order(gateway_order.gateway_order_id)

        current_domain.repository_for(Order).save(order)
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            payment_method=command.payment_method,
        )
        return str(order.id)
