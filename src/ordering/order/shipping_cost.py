"""Shipping cost — package details and the shipping payment link.

When the real shipping charge is only known after packing, an admin records
the package (dimensions, weight, photos) and sends the customer a payment
link for the difference. Gateway webhooks for that link are applied through
``ApplyShippingPayment``.
"""

import json
import re
import time
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from ordering.domain import ordering, process
from ordering.exceptions import RetriableExternalError
from ordering.gateway import get_gateway
from ordering.order.order import Order
from ordering.order.payment import DUPLICATE, PROCESSED, call_gateway
from ordering.shipment.inflight import stage_registry
from ordering.storage import get_storage

logger = structlog.get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/avif"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
UPLOAD_PREFIX = "order-packs"
SHIPPING_LINK_SLOT = "shipping-link"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\-]")


def upload_key(order_id: str, filename: str) -> str:
    safe_name = _UNSAFE_FILENAME_CHARS.sub("_", filename or "file")
    return f"{UPLOAD_PREFIX}/{order_id}/{int(time.time() * 1000)}-{uuid4().hex[:8]}-{safe_name}"


@ordering.command(part_of="Order")
class RequestPackageImageUpload:
    order_id = Identifier(required=True)
    filename = String(max_length=255, default="file")
    content_type = String(required=True, max_length=100)
    size = Integer(required=True, min_value=0)


@ordering.command(part_of="Order")
class SavePackage:
    order_id = Identifier(required=True)
    length_cm = Float(min_value=0.0)
    breadth_cm = Float(min_value=0.0)
    height_cm = Float(min_value=0.0)
    weight_kg = Float(min_value=0.0)
    notes = String(max_length=1000)
    images = Text()  # JSON: list of public image URLs


@ordering.command(part_of="Order")
class CreateShippingPaymentLink:
    order_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(max_length=3, default="INR")
    description = String(max_length=255)


@ordering.command(part_of="Order")
class ApplyShippingPayment:
    event_id = String(max_length=255)
    link_id = String(required=True, max_length=100)
    payment_id = String(required=True, max_length=255)
    amount = Integer(required=True)


@ordering.command(part_of="Order")
class CloseShippingPaymentLink:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=20)


@ordering.command_handler(part_of=Order)
class ShippingCostHandler:
    @handle(RequestPackageImageUpload)
    def request_package_image_upload(self, command):
        content_type = (command.content_type or "").strip().lower()
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError({"content_type": [f"Unsupported image type: {command.content_type}"]})
        if command.size > MAX_IMAGE_BYTES:
            raise ValidationError({"size": ["Image is larger than 10 MB"]})

        order = current_domain.repository_for(Order).get(command.order_id)
        key = upload_key(str(order.id), command.filename)
        try:
            upload = get_storage().presign_upload(key, content_type, command.size)
        except ConnectionError as exc:
            logger.warning("Object storage unavailable", order_id=str(order.id), error=str(exc))
            raise RetriableExternalError({"storage": [str(exc)]}, service="storage") from exc

        return {
            "upload_url": upload.upload_url,
            "public_url": upload.public_url,
            "key": upload.key,
            "expires_in": upload.expires_in,
            "headers": upload.headers or {},
        }

    @handle(SavePackage)
    def save_package(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        images = json.loads(command.images) if command.images else []
        removed = order.save_package(
            length_cm=command.length_cm,
            breadth_cm=command.breadth_cm,
            height_cm=command.height_cm,
            weight_kg=command.weight_kg,
            notes=command.notes,
            images=images,
        )
        repo.save(order)

        storage = get_storage()
        for url in removed:
            try:
                storage.delete(url)
            except Exception as exc:
                logger.error("Failed to delete package image", order_id=str(order.id), url=url, error=str(exc))
        return {"order_id": str(order.id), "images": order.shipping_package.image_urls, "removed": removed}

    @handle(CreateShippingPaymentLink)
    def create_shipping_payment_link(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.assert_can_open_shipping_payment_link(command.amount)

        currency = command.currency or order.currency or "INR"
        link = call_gateway(
            "create_payment_link",
            get_gateway().create_payment_link,
            command.amount,
            currency,
            command.description or f"Shipping charges for order {order.display_order_number}",
            f"{order.order_number}-SHIP{int(time.time())}",
            {"purpose": "shipping_payment", "order_id": str(order.id)},
        )
        order.open_shipping_payment_link(link.link_id, link.short_url, command.amount, currency)
        repo.save(order)
        logger.info("Shipping payment link created", order_id=str(order.id), link_id=link.link_id)
        return {
            "order_id": str(order.id),
            "link_id": link.link_id,
            "short_url": link.short_url,
            "amount": command.amount,
            "currency": currency,
            "status": order.shipping_payment.status,
        }

    @handle(ApplyShippingPayment)
    def apply_shipping_payment(self, command):
        repo = current_domain.repository_for(Order)
        match = repo.find_by_shipping_link_id(command.link_id)
        if match is None:
            raise ObjectNotFoundError(f"No order found for payment link {command.link_id}")
        order = repo.get(match.id)

        applied = order.apply_shipping_payment(
            event_id=command.event_id,
            link_id=command.link_id,
            payment_id=command.payment_id,
            amount=command.amount,
        )
        if applied:
            repo.save(order)
        return {
            "order_id": str(order.id),
            "status": PROCESSED if applied else DUPLICATE,
            "shipping_payment_status": order.shipping_payment.status,
            "amount_paid": order.shipping_payment.amount_paid,
        }

    @handle(CloseShippingPaymentLink)
    def close_shipping_payment_link(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.close_shipping_payment_link(command.status)
        repo.save(order)
        return {"order_id": str(order.id), "shipping_payment_status": order.shipping_payment.status}


def send_shipping_payment_link(order_id: str, amount: int, currency: str = "INR", description: str | None = None):
    """Create the shipping payment link while holding the order's link slot.

    The slot is held until the new link is committed, so a second request for
    the same order fails with IdempotencyViolation instead of reaching the
    gateway before the first link is visible.
    """
    command = CreateShippingPaymentLink(order_id=order_id, amount=amount, currency=currency, description=description)
    with stage_registry.hold(order_id, SHIPPING_LINK_SLOT):
        return process(command)
