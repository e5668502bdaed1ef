"""Order aggregate (CQRS) — the core of the ordering domain.

The Order aggregate carries three loosely coupled state domains that evolve
at different speeds: the business status, the payment status and the carrier
shipment record. Every mutation goes through a method here, which enforces
the rule, stamps timestamps and raises a domain event. Persistence is guarded
by the ``version`` token (see OrderRepository.save).

State Machine:
    PENDING → CONFIRMED → PROCESSING → SHIPPED → DELIVERED
    {PENDING, CONFIRMED, PROCESSING, SHIPPED} → CANCELLED
    Any → any via the audited override.

Payment Status:
    prepaid: AWAITING_PAYMENT → PAID | FAILED, FAILED → PAID, PAID → REFUNDED
    cod:     COD_PENDING → COD_PAID

All money is held in integer minor units (paise).
"""

import json
import re
import time
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from random import randint

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)
from protean.utils.reflection import declared_fields

from ordering.domain import ordering
from ordering.exceptions import ConflictError, PaymentPolicyViolation
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


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    COD = "cod"
    PREPAID = "prepaid"


class PaymentStatus(Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    FAILED = "failed"
    COD_PENDING = "cod_pending"
    COD_PAID = "cod_paid"
    REFUNDED = "refunded"


class ShipmentStatus(Enum):
    ORDER_CREATED = "ORDER_CREATED"
    AWB_ASSIGNED = "AWB_ASSIGNED"
    PICKUP_GENERATED = "PICKUP_GENERATED"
    LABEL_READY = "LABEL_READY"
    INVOICE_READY = "INVOICE_READY"
    MANIFEST_READY = "MANIFEST_READY"
    TRACKING_UPDATED = "TRACKING_UPDATED"


class ShippingPaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class GstStatus(Enum):
    NONE = "none"
    REQUESTED = "requested"
    READY = "ready"


_LIFECYCLE = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

_NEXT_STATUS = dict(zip(_LIFECYCLE, _LIFECYCLE[1:], strict=False))

_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),  # terminal
    OrderStatus.CANCELLED: set(),  # terminal
}

_UNPAID_PREPAID_STATUSES = {PaymentStatus.AWAITING_PAYMENT, PaymentStatus.FAILED}

_OPEN_LINK_STATUSES = {ShippingPaymentStatus.PENDING, ShippingPaymentStatus.PARTIAL}

_DOCUMENT_STATUSES = {
    "label": ShipmentStatus.LABEL_READY,
    "invoice": ShipmentStatus.INVOICE_READY,
    "manifest": ShipmentStatus.MANIFEST_READY,
}

MAX_PACKAGE_IMAGES = 5

GSTIN_PATTERN = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][A-Z0-9]Z[A-Z0-9]$")


def _now() -> datetime:
    return datetime.now(UTC)


def _load_list(raw: str | None) -> list:
    return json.loads(raw) if raw else []


def _evolve(current, vo_cls, **changes):
    """Build a replacement value object from ``current`` with ``changes`` applied."""
    values = {}
    if current is not None:
        values = {name: getattr(current, name) for name in declared_fields(current)}
    values.update(changes)
    return vo_cls(**values)


def generate_order_number() -> str:
    """Order numbers look like ORD<epoch-ms><3 digits>."""
    return f"ORD{int(time.time() * 1000)}{randint(0, 999):03d}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@ordering.value_object(part_of="Order")
class Address:
    """A delivery or billing address captured at checkout time."""

    full_name = String(required=True, max_length=255)
    phone = String(max_length=20)
    email = String(max_length=254)
    line1 = String(required=True, max_length=255)
    line2 = String(max_length=255)
    landmark = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(max_length=100, default="India")


@ordering.value_object(part_of="Order")
class PaymentRecord:
    """How the order is paid and where the payment currently stands."""

    method = String(required=True, choices=PaymentMethod)
    status = String(required=True, choices=PaymentStatus)
    gateway_order_id = String(max_length=255)
    gateway_payment_id = String(max_length=255)
    gateway_signature = String(max_length=512)
    failure_reason = String(max_length=500)
    paid_at = DateTime()
    refund_requested_at = DateTime()


@ordering.value_object(part_of="Order")
class ShipmentRecord:
    """Identifiers and documents produced by the carrier integration."""

    shipment_id = String(max_length=100)
    carrier_order_id = String(max_length=100)
    awb_code = String(max_length=100)
    courier_name = String(max_length=255)
    courier_id = String(max_length=50)
    label_url = String(max_length=1000)
    invoice_url = String(max_length=1000)
    manifest_url = String(max_length=1000)
    pickup_requested_at = DateTime()
    pickup_scheduled_for = String(max_length=100)
    tracking_url = String(max_length=1000)
    current_status = String(max_length=100)
    estimated_delivery = String(max_length=100)
    status = String(choices=ShipmentStatus)
    updated_at = DateTime()

    @invariant.post
    def awb_requires_shipment(self):
        if self.awb_code and not self.shipment_id:
            raise ValidationError({"awb_code": ["AWB cannot be set before the shipment is created"]})

    @invariant.post
    def pickup_requires_awb(self):
        if self.pickup_requested_at and not self.awb_code:
            raise ValidationError({"pickup": ["Pickup cannot be generated before an AWB is assigned"]})


@ordering.value_object(part_of="Order")
class ShippingPackage:
    """Packed parcel measurements and photos used to price extra shipping."""

    length_cm = Float(min_value=0.0)
    breadth_cm = Float(min_value=0.0)
    height_cm = Float(min_value=0.0)
    weight_kg = Float(min_value=0.0)
    notes = Text()
    images = Text()  # JSON list of image URLs
    packed_at = DateTime()

    @property
    def image_urls(self) -> list[str]:
        return _load_list(self.images)


@ordering.value_object(part_of="Order")
class ShippingPayment:
    """Payment link issued to collect extra shipping cost."""

    link_id = String(max_length=100)
    short_url = String(max_length=500)
    status = String(choices=ShippingPaymentStatus)
    currency = String(max_length=3, default="INR")
    amount = Integer(min_value=0, default=0)
    amount_paid = Integer(min_value=0, default=0)
    payment_ids = Text()  # JSON list of applied gateway payment ids
    created_at = DateTime()
    paid_at = DateTime()

    @invariant.post
    def paid_amount_never_exceeds_amount(self):
        if (self.amount_paid or 0) > (self.amount or 0):
            raise ValidationError({"amount_paid": ["Amount paid cannot exceed the link amount"]})

    @invariant.post
    def paid_status_matches_amount(self):
        fully_paid = bool(self.amount) and (self.amount_paid or 0) >= self.amount
        if fully_paid != (self.status == ShippingPaymentStatus.PAID.value):
            raise ValidationError({"status": ["Status must be paid exactly when the full amount is paid"]})


@ordering.value_object(part_of="Order")
class GstDetails:
    """Customer request for a GST invoice and the tax figures on it."""

    want_invoice = Boolean(default=False)
    gstin = String(max_length=15)
    legal_name = String(max_length=255)
    place_of_supply = String(max_length=100)
    email = String(max_length=254)
    requested_at = DateTime()
    tax_percent = Float(min_value=0.0)
    tax_base = Integer(min_value=0)
    tax_amount = Integer(min_value=0)
    invoice_number = String(max_length=100)
    invoice_url = String(max_length=1000)
    invoice_uploaded_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order")
class OrderItem:
    """A line item at the price locked in at checkout."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    sku = String(max_length=100)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


@ordering.entity(part_of="Order")
class StatusAudit:
    """Record of an operator overriding the order status."""

    from_status = String(required=True, max_length=50)
    to_status = String(required=True, max_length=50)
    actor = String(required=True, max_length=255)
    justification = Text(required=True)
    recorded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@ordering.aggregate
class Order:
    order_number = String(required=True, max_length=50)
    customer_id = Identifier(required=True)
    items = HasMany(OrderItem)
    shipping_address = ValueObject(Address, required=True)
    billing_address = ValueObject(Address)
    subtotal = Integer(min_value=0, default=0)
    tax = Integer(min_value=0, default=0)
    shipping = Integer(min_value=0, default=0)
    total = Integer(min_value=0, default=0)
    currency = String(max_length=3, default="INR")
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment = ValueObject(PaymentRecord)
    shipment = ValueObject(ShipmentRecord)
    shipping_package = ValueObject(ShippingPackage)
    shipping_payment = ValueObject(ShippingPayment)
    gst = ValueObject(GstDetails)
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=255)
    cancelled_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    processed_events = Text()  # JSON list of applied external event ids
    # Lookup keys mirrored from the value objects for webhook routing
    gateway_order_id = String(max_length=255)
    shipping_link_id = String(max_length=100)
    awb_code = String(max_length=100)
    status_audits = HasMany(StatusAudit)
    version = Integer(min_value=0, default=0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_is_sum_of_parts(self):
        if (self.total or 0) != (self.subtotal or 0) + (self.tax or 0) + (self.shipping or 0):
            raise ValidationError({"total": ["Total must equal subtotal + tax + shipping"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        customer_id: str,
        items_data: list[dict],
        shipping_address: dict,
        payment_method: str,
        billing_address: dict | None = None,
        tax: int = 0,
        shipping: int = 0,
        subtotal: int | None = None,
        total: int | None = None,
        currency: str = "INR",
        order_number: str | None = None,
    ):
        """Create a new pending order from checkout data."""
        if not items_data:
            raise ValidationError({"items": ["Order must contain at least one item"]})
        if payment_method not in {m.value for m in PaymentMethod}:
            raise ValidationError({"payment_method": [f"Unknown payment method: {payment_method}"]})

        if subtotal is None:
            subtotal = sum(int(item["quantity"]) * int(item["unit_price"]) for item in items_data)
        if total is None:
            total = subtotal + tax + shipping

        initial_payment = (
            PaymentStatus.COD_PENDING if payment_method == PaymentMethod.COD.value else PaymentStatus.AWAITING_PAYMENT
        )
        now = _now()
        order = cls(
            order_number=order_number or generate_order_number(),
            customer_id=customer_id,
            shipping_address=Address(**shipping_address),
            billing_address=Address(**billing_address) if billing_address else None,
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            total=total,
            currency=currency,
            status=OrderStatus.PENDING.value,
            payment=PaymentRecord(method=payment_method, status=initial_payment.value),
            processed_events=json.dumps([]),
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id),
                payment_method=payment_method,
                total=total,
                currency=currency,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------
    @property
    def display_order_number(self) -> str:
        return self.order_number or f"#{str(self.id)[-8:].upper()}"

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items or [])

    @property
    def is_paid(self) -> bool:
        return self.payment is not None and self.payment.status in (
            PaymentStatus.PAID.value,
            PaymentStatus.COD_PAID.value,
        )

    @property
    def is_delivered(self) -> bool:
        return self.status == OrderStatus.DELIVERED.value

    @property
    def effective_billing_address(self):
        return self.billing_address or self.shipping_address

    @property
    def gst_status(self) -> str:
        if not self.gst or not self.gst.want_invoice:
            return GstStatus.NONE.value
        if self.gst.invoice_url:
            return GstStatus.READY.value
        return GstStatus.REQUESTED.value

    def invoice(self) -> tuple[str | None, str | None]:
        """Return ``(url, source)`` for the invoice to show, preferring GST."""
        if self.gst and self.gst.invoice_url:
            return self.gst.invoice_url, "gst"
        if self.shipment and self.shipment.invoice_url:
            return self.shipment.invoice_url, "carrier"
        return None, None

    # -------------------------------------------------------------------
    # Event idempotency
    # -------------------------------------------------------------------
    def has_processed(self, event_id: str | None) -> bool:
        return bool(event_id) and event_id in _load_list(self.processed_events)

    def _remember_event(self, event_id: str | None) -> None:
        if not event_id:
            return
        seen = _load_list(self.processed_events)
        if event_id not in seen:
            seen.append(event_id)
            self.processed_events = json.dumps(seen)

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ConflictError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _set_status(self, target_status: OrderStatus, now: datetime) -> None:
        old_status = self.status
        self.status = target_status.value
        if target_status == OrderStatus.SHIPPED and not self.shipped_at:
            self.shipped_at = now
        elif target_status == OrderStatus.DELIVERED and not self.delivered_at:
            self.delivered_at = now
        elif target_status == OrderStatus.CANCELLED and not self.cancelled_at:
            self.cancelled_at = now
        self.updated_at = now
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                old_status=old_status,
                new_status=target_status.value,
                changed_at=now,
            )
        )

    def _guard_delivery_payment(self) -> None:
        if (
            self.payment
            and self.payment.method == PaymentMethod.PREPAID.value
            and PaymentStatus(self.payment.status) in _UNPAID_PREPAID_STATUSES
        ):
            raise PaymentPolicyViolation(
                {"payment": [f"Prepaid order cannot be delivered while payment is {self.payment.status}"]}
            )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def accept(self) -> None:
        """Accept a pending order."""
        if self.status != OrderStatus.PENDING.value:
            raise ConflictError({"status": [f"Only pending orders can be accepted (order is {self.status})"]})
        self._set_status(OrderStatus.CONFIRMED, _now())

    def advance(self, block_delivery_until_paid: bool = True, cod_auto_collect_on_delivery: bool = True) -> str:
        """Move the order one step forward along the lifecycle. Returns the new status."""
        current = OrderStatus(self.status)
        if current not in _NEXT_STATUS:
            raise ConflictError({"status": [f"Cannot advance an order that is {current.value}"]})

        target = _NEXT_STATUS[current]
        self._assert_can_transition(target)
        if target == OrderStatus.DELIVERED and block_delivery_until_paid:
            self._guard_delivery_payment()

        now = _now()
        self._set_status(target, now)

        if target == OrderStatus.DELIVERED and cod_auto_collect_on_delivery:
            if self.payment and self.payment.status == PaymentStatus.COD_PENDING.value:
                self._collect_cod(now, source="auto")
        return target.value

    def cancel(self, reason: str, cancelled_by: str | None = None) -> None:
        """Cancel the order before delivery, requesting a refund if it was paid."""
        current = OrderStatus(self.status)
        if current in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise ConflictError({"status": [f"Cannot cancel an order that is {current.value}"]})
        if not reason or not reason.strip():
            raise ValidationError({"reason": ["Cancellation reason is required"]})

        now = _now()
        self.cancellation_reason = reason.strip()
        self.cancelled_by = cancelled_by
        self._set_status(OrderStatus.CANCELLED, now)
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                previous_status=current.value,
                reason=self.cancellation_reason,
                cancelled_by=cancelled_by or "",
                cancelled_at=now,
            )
        )

        if self.payment and self.payment.status == PaymentStatus.PAID.value:
            self.payment = _evolve(
                self.payment,
                PaymentRecord,
                status=PaymentStatus.REFUNDED.value,
                refund_requested_at=now,
            )
            self.raise_(
                RefundRequested(
                    order_id=str(self.id),
                    gateway_payment_id=self.payment.gateway_payment_id or "",
                    amount=self.total,
                    reason=self.cancellation_reason,
                    requested_at=now,
                )
            )

    def override_status(self, target: str, justification: str, actor: str) -> bool:
        """Force the status to ``target`` outside the normal transition table.

        Always leaves an audit entry. Returns False when the order already had
        the target status, in which case no status change is announced.
        """
        errors = {}
        if not justification or not justification.strip():
            errors["justification"] = ["Justification is required for a status override"]
        if not actor or not actor.strip():
            errors["actor"] = ["Actor is required for a status override"]
        if target not in {s.value for s in OrderStatus}:
            errors["status"] = [f"Unknown order status: {target}"]
        if errors:
            raise ValidationError(errors)

        now = _now()
        from_status = self.status
        self.add_status_audits(
            StatusAudit(
                from_status=from_status,
                to_status=target,
                actor=actor.strip(),
                justification=justification.strip(),
                recorded_at=now,
            )
        )
        self.raise_(
            OrderStatusOverridden(
                order_id=str(self.id),
                from_status=from_status,
                to_status=target,
                actor=actor.strip(),
                justification=justification.strip(),
                overridden_at=now,
            )
        )
        if from_status == target:
            self.updated_at = now
            return False

        self._set_status(OrderStatus(target), now)
        return True

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def attach_gateway_order(self, gateway_order_id: str) -> None:
        self.payment = _evolve(self.payment, PaymentRecord, gateway_order_id=gateway_order_id)
        self.gateway_order_id = gateway_order_id

    def record_gateway_payment(self, event_id: str, gateway_payment_id: str, signature: str | None = None) -> bool:
        """Mark a prepaid order as paid. Returns False for a replayed event."""
        if self.has_processed(event_id):
            return False
        if self.payment.method != PaymentMethod.PREPAID.value:
            raise ConflictError({"payment": ["Gateway payments only apply to prepaid orders"]})

        current = PaymentStatus(self.payment.status)
        if current == PaymentStatus.PAID and self.payment.gateway_payment_id == gateway_payment_id:
            self._remember_event(event_id)
            return False
        if current not in _UNPAID_PREPAID_STATUSES:
            raise ConflictError({"payment": [f"Cannot record a payment when payment is {current.value}"]})

        now = _now()
        self.payment = _evolve(
            self.payment,
            PaymentRecord,
            status=PaymentStatus.PAID.value,
            gateway_payment_id=gateway_payment_id,
            gateway_signature=signature,
            failure_reason=None,
            paid_at=now,
        )
        self._remember_event(event_id)
        self.updated_at = now
        self.raise_(
            PaymentCaptured(
                order_id=str(self.id),
                gateway_order_id=self.payment.gateway_order_id or "",
                gateway_payment_id=gateway_payment_id,
                amount=self.total,
                paid_at=now,
            )
        )
        return True

    def record_payment_failure(self, event_id: str, reason: str | None = None) -> bool:
        """Mark an awaiting prepaid payment as failed. Returns False for a replayed event."""
        if self.has_processed(event_id):
            return False

        current = PaymentStatus(self.payment.status)
        if current not in _UNPAID_PREPAID_STATUSES:
            raise ConflictError({"payment": [f"Cannot record a failure when payment is {current.value}"]})

        now = _now()
        self.payment = _evolve(
            self.payment,
            PaymentRecord,
            status=PaymentStatus.FAILED.value,
            failure_reason=reason,
        )
        self._remember_event(event_id)
        self.updated_at = now
        self.raise_(
            PaymentFailed(
                order_id=str(self.id),
                gateway_order_id=self.payment.gateway_order_id or "",
                reason=reason or "",
                failed_at=now,
            )
        )
        return True

    def confirm_cod_collection(self) -> bool:
        """Record that cash was collected. Returns False if already collected."""
        if self.payment.method != PaymentMethod.COD.value:
            raise ConflictError({"payment": ["Cash collection only applies to COD orders"]})
        if self.payment.status == PaymentStatus.COD_PAID.value:
            return False
        if self.payment.status != PaymentStatus.COD_PENDING.value:
            raise ConflictError({"payment": [f"Cannot collect cash when payment is {self.payment.status}"]})
        self._collect_cod(_now(), source="manual")
        return True

    def _collect_cod(self, now: datetime, source: str) -> None:
        self.payment = _evolve(self.payment, PaymentRecord, status=PaymentStatus.COD_PAID.value, paid_at=now)
        self.updated_at = now
        self.raise_(
            CodCollected(
                order_id=str(self.id),
                amount=self.total,
                source=source,
                collected_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Shipment
    # -------------------------------------------------------------------
    def assert_shippable(self) -> None:
        if self.status == OrderStatus.CANCELLED.value:
            raise ValidationError({"status": ["Cannot ship a cancelled order"]})

    def record_shipment_created(self, shipment_id: str, carrier_order_id: str | None = None) -> None:
        self.assert_shippable()
        if self.shipment and self.shipment.shipment_id:
            raise ConflictError({"shipment_id": ["Shipment already created"]})

        now = _now()
        self.shipment = _evolve(
            self.shipment,
            ShipmentRecord,
            shipment_id=str(shipment_id),
            carrier_order_id=str(carrier_order_id) if carrier_order_id else None,
            status=ShipmentStatus.ORDER_CREATED.value,
            updated_at=now,
        )
        self.updated_at = now
        self.raise_(
            ShipmentCreated(
                order_id=str(self.id),
                shipment_id=str(shipment_id),
                carrier_order_id=str(carrier_order_id or ""),
                created_at=now,
            )
        )

    def record_carrier_order_id(self, carrier_order_id: str) -> None:
        if not self.shipment or not self.shipment.shipment_id:
            raise ValidationError({"shipment_id": ["Shipment must be created before its carrier order id is known"]})
        self.shipment = _evolve(self.shipment, ShipmentRecord, carrier_order_id=str(carrier_order_id))

    def record_awb(self, awb_code: str, courier_name: str | None = None, courier_id: str | None = None) -> None:
        self.assert_shippable()
        if not self.shipment or not self.shipment.shipment_id:
            raise ValidationError({"shipment_id": ["Shipment must be created before assigning an AWB"]})
        if not awb_code or not awb_code.strip():
            raise ValidationError({"awb_code": ["AWB code is required"]})

        now = _now()
        awb = awb_code.strip().upper()
        self.shipment = _evolve(
            self.shipment,
            ShipmentRecord,
            awb_code=awb,
            courier_name=courier_name or self.shipment.courier_name,
            courier_id=str(courier_id) if courier_id else self.shipment.courier_id,
            status=ShipmentStatus.AWB_ASSIGNED.value,
            updated_at=now,
        )
        self.awb_code = awb
        self.updated_at = now
        self.raise_(
            AwbAssigned(
                order_id=str(self.id),
                shipment_id=self.shipment.shipment_id,
                awb_code=awb,
                courier_name=self.shipment.courier_name or "",
                assigned_at=now,
            )
        )

    def record_pickup(self, scheduled_for: str | None = None) -> None:
        self.assert_shippable()
        if not self.shipment or not self.shipment.awb_code:
            raise ValidationError({"awb_code": ["AWB must be assigned before generating a pickup"]})

        now = _now()
        self.shipment = _evolve(
            self.shipment,
            ShipmentRecord,
            pickup_requested_at=now,
            pickup_scheduled_for=scheduled_for,
            status=ShipmentStatus.PICKUP_GENERATED.value,
            updated_at=now,
        )
        self.updated_at = now
        self.raise_(
            PickupGenerated(
                order_id=str(self.id),
                awb_code=self.shipment.awb_code,
                pickup_scheduled_for=scheduled_for or "",
                requested_at=now,
            )
        )

    def record_document(self, document: str, url: str) -> None:
        """Store a label, invoice or manifest URL."""
        if document not in _DOCUMENT_STATUSES:
            raise ValidationError({"document": [f"Unknown shipment document: {document}"]})
        if not self.shipment or not self.shipment.shipment_id:
            raise ValidationError({"shipment_id": [f"Shipment must be created before generating the {document}"]})
        if not url:
            raise ValidationError({"url": [f"Carrier returned no {document} URL"]})

        now = _now()
        self.shipment = _evolve(
            self.shipment,
            ShipmentRecord,
            status=_DOCUMENT_STATUSES[document].value,
            updated_at=now,
            **{f"{document}_url": url},
        )
        self.updated_at = now
        self.raise_(
            ShipmentDocumentReady(
                order_id=str(self.id),
                document=document,
                url=url,
                ready_at=now,
            )
        )

    def record_tracking_update(
        self,
        event_id: str | None = None,
        awb_code: str | None = None,
        courier_name: str | None = None,
        current_status: str | None = None,
        tracking_url: str | None = None,
        estimated_delivery: str | None = None,
    ) -> bool:
        """Apply a carrier tracking update. Returns False for a replayed event."""
        if self.has_processed(event_id):
            return False
        if not self.shipment or not self.shipment.shipment_id:
            raise ValidationError({"shipment_id": ["Shipment must be created before tracking updates"]})

        now = _now()
        self.shipment = _evolve(
            self.shipment,
            ShipmentRecord,
            awb_code=awb_code.strip().upper() if awb_code else self.shipment.awb_code,
            courier_name=courier_name or self.shipment.courier_name,
            current_status=current_status or self.shipment.current_status,
            tracking_url=tracking_url or self.shipment.tracking_url,
            estimated_delivery=estimated_delivery or self.shipment.estimated_delivery,
            status=ShipmentStatus.TRACKING_UPDATED.value,
            updated_at=now,
        )
        self.awb_code = self.shipment.awb_code
        self._remember_event(event_id)
        self.updated_at = now
        self.raise_(
            TrackingUpdated(
                order_id=str(self.id),
                awb_code=self.shipment.awb_code or "",
                courier_name=self.shipment.courier_name or "",
                current_status=self.shipment.current_status or "",
                tracking_url=self.shipment.tracking_url or "",
                updated_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Shipping cost
    # -------------------------------------------------------------------
    def save_package(
        self,
        length_cm: float | None = None,
        breadth_cm: float | None = None,
        height_cm: float | None = None,
        weight_kg: float | None = None,
        notes: str | None = None,
        images: list[str] | None = None,
    ) -> list[str]:
        """Record package details. Returns image URLs dropped from the previous package."""
        images = [url.strip() for url in (images or []) if url and url.strip()]
        if len(images) > MAX_PACKAGE_IMAGES:
            raise ValidationError({"images": [f"At most {MAX_PACKAGE_IMAGES} package images are allowed"]})
        bad = [url for url in images if not url.lower().startswith(("http://", "https://"))]
        if bad:
            raise ValidationError({"images": [f"Not an http(s) URL: {url}" for url in bad]})

        previous = self.shipping_package.image_urls if self.shipping_package else []
        now = _now()
        self.shipping_package = ShippingPackage(
            length_cm=length_cm,
            breadth_cm=breadth_cm,
            height_cm=height_cm,
            weight_kg=weight_kg,
            notes=notes,
            images=json.dumps(images),
            packed_at=now,
        )
        self.updated_at = now
        self.raise_(
            PackageSaved(
                order_id=str(self.id),
                weight_kg=weight_kg,
                image_count=len(images),
                packed_at=now,
            )
        )
        return [url for url in previous if url not in images]

    def assert_can_open_shipping_payment_link(self, amount: int) -> None:
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Shipping payment amount must be greater than zero"]})
        if self.status == OrderStatus.CANCELLED.value:
            raise ValidationError({"status": ["Cannot collect shipping cost for a cancelled order"]})
        if self.shipping_payment and ShippingPaymentStatus(self.shipping_payment.status) in _OPEN_LINK_STATUSES:
            raise ConflictError({"shipping_payment": ["A shipping payment link is already open for this order"]})

    def open_shipping_payment_link(self, link_id: str, short_url: str | None, amount: int, currency: str = "INR"):
        self.assert_can_open_shipping_payment_link(amount)

        now = _now()
        self.shipping_payment = ShippingPayment(
            link_id=link_id,
            short_url=short_url,
            status=ShippingPaymentStatus.PENDING.value,
            currency=currency,
            amount=amount,
            amount_paid=0,
            payment_ids=json.dumps([]),
            created_at=now,
        )
        self.shipping_link_id = link_id
        self.updated_at = now
        self.raise_(
            ShippingPaymentLinkCreated(
                order_id=str(self.id),
                link_id=link_id,
                short_url=short_url or "",
                amount=amount,
                currency=currency,
                created_at=now,
            )
        )

    def apply_shipping_payment(self, event_id: str | None, link_id: str, payment_id: str, amount: int) -> bool:
        """Accumulate a payment against the shipping link. Returns False for a replay."""
        if self.has_processed(event_id):
            return False
        if not self.shipping_payment or self.shipping_payment.link_id != link_id:
            raise ValidationError({"link_id": ["Payment does not match the order's shipping payment link"]})
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Payment amount must be greater than zero"]})

        seen_payments = _load_list(self.shipping_payment.payment_ids)
        if payment_id in seen_payments:
            self._remember_event(event_id)
            return False

        current = ShippingPaymentStatus(self.shipping_payment.status)
        if current in (ShippingPaymentStatus.EXPIRED, ShippingPaymentStatus.CANCELLED):
            raise ConflictError({"shipping_payment": [f"Shipping payment link is {current.value}"]})

        now = _now()
        link_amount = self.shipping_payment.amount
        amount_paid = min(link_amount, (self.shipping_payment.amount_paid or 0) + amount)
        if amount_paid >= link_amount:
            status = ShippingPaymentStatus.PAID
        elif amount_paid > 0:
            status = ShippingPaymentStatus.PARTIAL
        else:
            status = ShippingPaymentStatus.PENDING

        seen_payments.append(payment_id)
        self.shipping_payment = _evolve(
            self.shipping_payment,
            ShippingPayment,
            amount_paid=amount_paid,
            status=status.value,
            payment_ids=json.dumps(seen_payments),
            paid_at=self.shipping_payment.paid_at or (now if status == ShippingPaymentStatus.PAID else None),
        )
        self._remember_event(event_id)
        self.updated_at = now
        self.raise_(
            ShippingPaymentApplied(
                order_id=str(self.id),
                link_id=link_id,
                payment_id=payment_id,
                amount=amount,
                amount_paid=amount_paid,
                status=status.value,
                applied_at=now,
            )
        )
        return True

    def close_shipping_payment_link(self, status: str) -> None:
        if status not in (ShippingPaymentStatus.EXPIRED.value, ShippingPaymentStatus.CANCELLED.value):
            raise ValidationError({"status": ["A payment link can only be closed as expired or cancelled"]})
        if not self.shipping_payment:
            raise ValidationError({"shipping_payment": ["Order has no shipping payment link"]})

        current = ShippingPaymentStatus(self.shipping_payment.status)
        if current not in _OPEN_LINK_STATUSES:
            raise ConflictError({"shipping_payment": [f"Cannot close a payment link that is {current.value}"]})

        now = _now()
        self.shipping_payment = _evolve(self.shipping_payment, ShippingPayment, status=status)
        self.updated_at = now
        self.raise_(
            ShippingPaymentLinkClosed(
                order_id=str(self.id),
                link_id=self.shipping_payment.link_id,
                status=status,
                closed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # GST
    # -------------------------------------------------------------------
    def record_gst_details(
        self,
        want_invoice: bool,
        gstin: str | None = None,
        legal_name: str | None = None,
        place_of_supply: str | None = None,
        email: str | None = None,
        tax_percent: float | None = None,
        tax_amount: int | None = None,
    ) -> None:
        now = _now()
        if not want_invoice:
            self.gst = GstDetails(want_invoice=False)
            self.updated_at = now
            self.raise_(GstDetailsRecorded(order_id=str(self.id), want_invoice=False, recorded_at=now))
            return

        gstin = (gstin or "").strip().upper()
        errors = {}
        if not GSTIN_PATTERN.match(gstin):
            errors["gstin"] = ["GSTIN format is invalid"]
        if not legal_name or not legal_name.strip():
            errors["legal_name"] = ["Legal name is required for a GST invoice"]
        if tax_percent is not None and tax_percent < 0:
            errors["tax_percent"] = ["Tax percent cannot be negative"]
        if errors:
            raise ValidationError(errors)

        tax_base = self.subtotal
        computed = compute_tax(tax_base, tax_percent) if tax_percent is not None else None
        if tax_amount is not None:
            if computed is not None and abs(tax_amount - computed) > 1:
                raise ValidationError({"tax_amount": [f"Tax amount {tax_amount} does not match {tax_percent}% of base"]})
            if self.tax and abs(tax_amount - self.tax) > 1:
                raise ValidationError({"tax_amount": [f"Tax amount {tax_amount} does not match order tax {self.tax}"]})
        elif self.tax:
            if computed is not None and abs(self.tax - computed) > 1:
                raise ValidationError({"tax_percent": [f"Order tax {self.tax} does not match {tax_percent}% of base"]})
            tax_amount = self.tax
        else:
            tax_amount = computed

        with atomic_change(self):
            if tax_amount is not None and not self.tax:
                self.tax = tax_amount
                self.total = self.subtotal + self.tax + self.shipping
            self.gst = GstDetails(
                want_invoice=True,
                gstin=gstin,
                legal_name=legal_name.strip(),
                place_of_supply=(place_of_supply or "").strip().upper() or None,
                email=(email or "").strip().lower() or None,
                requested_at=now,
                tax_percent=tax_percent,
                tax_base=tax_base,
                tax_amount=tax_amount,
            )
            self.updated_at = now

        self.raise_(
            GstDetailsRecorded(
                order_id=str(self.id),
                want_invoice=True,
                gstin=gstin,
                tax_amount=tax_amount,
                recorded_at=now,
            )
        )

    def attach_gst_invoice(self, invoice_url: str, invoice_number: str | None = None) -> None:
        if not self.gst or not self.gst.want_invoice:
            raise ValidationError({"gst": ["Customer did not request a GST invoice"]})
        if not invoice_url or not invoice_url.lower().startswith(("http://", "https://")):
            raise ValidationError({"invoice_url": ["Invoice URL must be an http(s) URL"]})

        now = _now()
        self.gst = _evolve(
            self.gst,
            GstDetails,
            invoice_url=invoice_url,
            invoice_number=invoice_number or self.gst.invoice_number,
            invoice_uploaded_at=now,
        )
        self.updated_at = now
        self.raise_(
            GstInvoiceAttached(
                order_id=str(self.id),
                invoice_number=invoice_number or "",
                invoice_url=invoice_url,
                attached_at=now,
            )
        )


def compute_tax(tax_base: int, tax_percent: float) -> int:
    """Tax in minor units, rounded half-up."""
    amount = Decimal(tax_base) * Decimal(str(tax_percent)) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
