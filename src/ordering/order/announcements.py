"""Order announcements — republishes Order events on the event bus.

Every event raised by the Order aggregate is forwarded to the configured
EventBus under a dotted topic name (``order.status-changed``,
``payment.refund-requested`` and so on) once the unit of work commits.
"""

from datetime import datetime
from enum import Enum

import structlog
from protean.utils.mixins import handle
from protean.utils.reflection import declared_fields

from ordering.bus import get_event_bus
from ordering.domain import ordering
from ordering.order.events import (
    AwbAssigned,
    CodCollected,
    GstDetailsRecorded,
    GstInvoiceAttached,
    OrderCancelled,
    OrderPlaced,
    OrderStatusChanged,
    OrderStatusOverridden,
    PackageSaved,
    PaymentCaptured,
    PaymentFailed,
    PickupGenerated,
    RefundRequested,
    ShipmentCreated,
    ShipmentDocumentReady,
    ShippingPaymentApplied,
    ShippingPaymentLinkClosed,
    ShippingPaymentLinkCreated,
    TrackingUpdated,
)
from ordering.order.order import Order

logger = structlog.get_logger(__name__)

TOPICS = {
    "OrderPlaced": "order.placed",
    "OrderStatusChanged": "order.status-changed",
    "OrderCancelled": "order.cancelled",
    "OrderStatusOverridden": "order.status-overridden",
    "PaymentCaptured": "payment.captured",
    "PaymentFailed": "payment.failed",
    "CodCollected": "payment.cod-collected",
    "RefundRequested": "payment.refund-requested",
    "ShipmentCreated": "shipment.created",
    "AwbAssigned": "shipment.awb-assigned",
    "PickupGenerated": "shipment.pickup-generated",
    "ShipmentDocumentReady": "shipment.document-ready",
    "TrackingUpdated": "shipment.tracking-updated",
    "PackageSaved": "shipping.package-saved",
    "ShippingPaymentLinkCreated": "shipping.payment-link-created",
    "ShippingPaymentApplied": "shipping.payment-applied",
    "ShippingPaymentLinkClosed": "shipping.payment-link-closed",
    "GstDetailsRecorded": "gst.details-recorded",
    "GstInvoiceAttached": "gst.invoice-attached",
}


def _plain(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def event_payload(event) -> dict:
    """Public fields of a domain event as JSON-friendly values."""
    return {name: _plain(getattr(event, name, None)) for name in declared_fields(event) if not name.startswith("_")}


@ordering.event_handler(part_of=Order)
class OrderAnnouncer:
    """Forwards committed Order events to the event bus."""

    def _announce(self, event) -> None:
        topic = TOPICS[event.__class__.__name__]
        payload = event_payload(event)
        get_event_bus().publish(topic, payload)
        logger.debug("Announced order event", topic=topic, order_id=payload.get("order_id"))

    @handle(OrderPlaced)
    def on_order_placed(self, event: OrderPlaced) -> None:
        self._announce(event)

    @handle(OrderStatusChanged)
    def on_status_changed(self, event: OrderStatusChanged) -> None:
        self._announce(event)

    @handle(OrderCancelled)
    def on_cancelled(self, event: OrderCancelled) -> None:
        self._announce(event)

    @handle(OrderStatusOverridden)
    def on_status_overridden(self, event: OrderStatusOverridden) -> None:
        self._announce(event)

    @handle(PaymentCaptured)
    def on_payment_captured(self, event: PaymentCaptured) -> None:
        self._announce(event)

    @handle(PaymentFailed)
    def on_payment_failed(self, event: PaymentFailed) -> None:
        self._announce(event)

    @handle(CodCollected)
    def on_cod_collected(self, event: CodCollected) -> None:
        self._announce(event)

    @handle(RefundRequested)
    def on_refund_requested(self, event: RefundRequested) -> None:
        logger.info("Refund requested", order_id=str(event.order_id), amount=event.amount)
        self._announce(event)

    @handle(ShipmentCreated)
    def on_shipment_created(self, event: ShipmentCreated) -> None:
        self._announce(event)

    @handle(AwbAssigned)
    def on_awb_assigned(self, event: AwbAssigned) -> None:
        self._announce(event)

    @handle(PickupGenerated)
    def on_pickup_generated(self, event: PickupGenerated) -> None:
        self._announce(event)

    @handle(ShipmentDocumentReady)
    def on_document_ready(self, event: ShipmentDocumentReady) -> None:
        self._announce(event)

    @handle(TrackingUpdated)
    def on_tracking_updated(self, event: TrackingUpdated) -> None:
        self._announce(event)

    @handle(PackageSaved)
    def on_package_saved(self, event: PackageSaved) -> None:
        self._announce(event)

    @handle(ShippingPaymentLinkCreated)
    def on_payment_link_created(self, event: ShippingPaymentLinkCreated) -> None:
        self._announce(event)

    @handle(ShippingPaymentApplied)
    def on_shipping_payment_applied(self, event: ShippingPaymentApplied) -> None:
        self._announce(event)

    @handle(ShippingPaymentLinkClosed)
    def on_payment_link_closed(self, event: ShippingPaymentLinkClosed) -> None:
        self._announce(event)

    @handle(GstDetailsRecorded)
    def on_gst_details_recorded(self, event: GstDetailsRecorded) -> None:
        self._announce(event)

    @handle(GstInvoiceAttached)
    def on_gst_invoice_attached(self, event: GstInvoiceAttached) -> None:
        self._announce(event)
