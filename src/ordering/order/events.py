"""Order domain events — immutable facts about order, payment and shipment changes.

All events are past tense, versioned, and carry enough data for the event
bus announcer and any downstream subscriber. Money is in minor units.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text

from ordering.domain import ordering


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class OrderPlaced:
    """A new order was placed at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    payment_method = String(required=True)
    total = Integer(required=True)
    currency = String(required=True)
    placed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderStatusChanged:
    """The order moved from one business state to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    old_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled before delivery."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_by = String()
    cancelled_at = DateTime(required=True)


@ordering.event(part_of="Order")
class OrderStatusOverridden:
    """An operator forced the order status outside the normal transitions."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    actor = String(required=True)
    justification = Text(required=True)
    overridden_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class PaymentCaptured:
    """The payment gateway confirmed a captured payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    gateway_order_id = String()
    gateway_payment_id = String(required=True)
    amount = Integer(required=True)
    paid_at = DateTime(required=True)


@ordering.event(part_of="Order")
class PaymentFailed:
    """The payment gateway reported a failed payment attempt."""

    __version__ = 1

    order_id = Identifier(required=True)
    gateway_order_id = String()
    reason = String()
    failed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class CodCollected:
    """Cash on delivery was collected."""

    __version__ = 1

    order_id = Identifier(required=True)
    amount = Integer(required=True)
    source = String(required=True)  # auto or manual
    collected_at = DateTime(required=True)


@ordering.event(part_of="Order")
class RefundRequested:
    """A paid order was cancelled and its payment must be refunded."""

    __version__ = 1

    order_id = Identifier(required=True)
    gateway_payment_id = String()
    amount = Integer(required=True)
    reason = String()
    requested_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Shipment
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class ShipmentCreated:
    """The carrier accepted the shipment order."""

    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = String(required=True)
    carrier_order_id = String()
    created_at = DateTime(required=True)


@ordering.event(part_of="Order")
class AwbAssigned:
    """The carrier assigned an airway bill and courier."""

    __version__ = 1

    order_id = Identifier(required=True)
    shipment_id = String(required=True)
    awb_code = String(required=True)
    courier_name = String()
    assigned_at = DateTime(required=True)


@ordering.event(part_of="Order")
class PickupGenerated:
    """A carrier pickup was requested for the shipment."""

    __version__ = 1

    order_id = Identifier(required=True)
    awb_code = String(required=True)
    pickup_scheduled_for = String()
    requested_at = DateTime(required=True)


@ordering.event(part_of="Order")
class ShipmentDocumentReady:
    """A label, invoice or manifest document became available."""

    __version__ = 1

    order_id = Identifier(required=True)
    document = String(required=True)  # label, invoice, manifest
    url = String(required=True)
    ready_at = DateTime(required=True)


@ordering.event(part_of="Order")
class TrackingUpdated:
    """A tracking update arrived for the shipment."""

    __version__ = 1

    order_id = Identifier(required=True)
    awb_code = String()
    courier_name = String()
    current_status = String()
    tracking_url = String()
    updated_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Shipping cost
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class PackageSaved:
    """Package dimensions, weight and photos were recorded."""

    __version__ = 1

    order_id = Identifier(required=True)
    weight_kg = Float()
    image_count = Integer(required=True)
    packed_at = DateTime(required=True)


@ordering.event(part_of="Order")
class ShippingPaymentLinkCreated:
    """A payment link for extra shipping cost was issued."""

    __version__ = 1

    order_id = Identifier(required=True)
    link_id = String(required=True)
    short_url = String()
    amount = Integer(required=True)
    currency = String(required=True)
    created_at = DateTime(required=True)


@ordering.event(part_of="Order")
class ShippingPaymentApplied:
    """A payment against the shipping payment link was applied."""

    __version__ = 1

    order_id = Identifier(required=True)
    link_id = String(required=True)
    payment_id = String(required=True)
    amount = Integer(required=True)
    amount_paid = Integer(required=True)
    status = String(required=True)
    applied_at = DateTime(required=True)


@ordering.event(part_of="Order")
class ShippingPaymentLinkClosed:
    """The shipping payment link expired or was cancelled."""

    __version__ = 1

    order_id = Identifier(required=True)
    link_id = String(required=True)
    status = String(required=True)
    closed_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# GST
# ---------------------------------------------------------------------------
@ordering.event(part_of="Order")
class GstDetailsRecorded:
    """The customer's GST invoice request and tax figures were recorded."""

    __version__ = 1

    order_id = Identifier(required=True)
    want_invoice = Boolean(default=False)
    gstin = String()
    tax_amount = Integer()
    recorded_at = DateTime(required=True)


@ordering.event(part_of="Order")
class GstInvoiceAttached:
    """A GST invoice document was attached to the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    invoice_number = String()
    invoice_url = String(required=True)
    attached_at = DateTime(required=True)
