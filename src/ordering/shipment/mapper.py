"""Order → carrier payload mapping and local pre-validation.

The carrier rejects a shipment for reasons that are cheap to catch locally
(a phone number with a country prefix, a five-digit pincode, a zero price).
``build_shipment_payload`` normalises what it can and ``validate_payload``
collects everything that is still wrong, so the caller can raise one
ValidationError listing every offending field before any network call.

Amounts on the Order are paise; the carrier expects rupees.
"""

import os
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from protean.exceptions import ValidationError

DEFAULT_PICKUP_NICKNAME = "Sales Office"
FALLBACK_EMAIL = "no-reply@example.com"
DEFAULT_DIMENSIONS_CM = {"length": 12, "breadth": 10, "height": 4}
MIN_WEIGHT_KG = 0.25
WEIGHT_PER_UNIT_KG = 0.25

_IST = ZoneInfo("Asia/Kolkata")
_NON_DIGITS = re.compile(r"\D+")
_REQUIRED_FIELDS = (
    "order_id",
    "order_date",
    "pickup_location",
    "billing_customer_name",
    "billing_address",
    "billing_city",
    "billing_state",
    "billing_country",
    "billing_email",
    "billing_phone",
    "billing_pincode",
    "payment_method",
    "sub_total",
    "length",
    "breadth",
    "height",
    "weight",
)
_POSITIVE_NUMBERS = ("sub_total", "length", "breadth", "height", "weight")


def pickup_nickname() -> str:
    return (os.environ.get("SHIPROCKET_PICKUP_NICKNAME") or DEFAULT_PICKUP_NICKNAME).strip()


def digits(value) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def normalize_phone(raw) -> str:
    """Reduce a phone number to digits, dropping a +91 country code or a leading 0.

    Any other length is returned as is so validation rejects it.
    """
    only = digits(raw)
    if only.startswith("91") and len(only) == 12:
        return only[2:]
    if only.startswith("0") and len(only) == 11:
        return only[1:]
    return only


def to_rupees(paise: int) -> float:
    return float((Decimal(paise or 0) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def carrier_order_date(moment: datetime | None) -> str:
    """Format a timestamp as ``YYYY-MM-DD HH:MM`` in Indian Standard Time."""
    moment = moment or datetime.now(_IST)
    return moment.astimezone(_IST).strftime("%Y-%m-%d %H:%M")


def build_shipment_payload(order) -> dict:
    """Map an Order to the carrier's create-order payload."""
    address = order.effective_billing_address
    full_name = (address.full_name or "").strip() if address else ""
    first, _, last = full_name.partition(" ")
    items = list(order.items or [])
    total_units = sum(item.quantity or 0 for item in items)

    package = order.shipping_package
    dimensions = dict(DEFAULT_DIMENSIONS_CM)
    weight = max(MIN_WEIGHT_KG, WEIGHT_PER_UNIT_KG * total_units)
    if package:
        dimensions = {
            "length": package.length_cm or dimensions["length"],
            "breadth": package.breadth_cm or dimensions["breadth"],
            "height": package.height_cm or dimensions["height"],
        }
        weight = package.weight_kg or weight

    order_items = []
    for item in items:
        sku = (item.sku or "").strip() or f"SKU-{item.product_id}"
        order_items.append(
            {
                "name": item.name or "Item",
                "sku": sku,
                "units": item.quantity or 0,
                "selling_price": max(1.0, to_rupees(item.unit_price)),
                "discount": 0,
                "tax": 0,
            }
        )

    return {
        "order_id": order.order_number or str(order.id),
        "order_date": carrier_order_date(order.created_at),
        "pickup_location": pickup_nickname(),
        "billing_customer_name": first or "Customer",
        "billing_last_name": last.strip(),
        "billing_address": ", ".join(part for part in (address.line1, address.line2) if part) if address else "",
        "billing_city": (address.city or "") if address else "",
        "billing_pincode": digits(address.postal_code) if address else "",
        "billing_state": (address.state or "") if address else "",
        "billing_country": "India",
        "billing_email": ((address.email or "").strip() if address else "") or FALLBACK_EMAIL,
        "billing_phone": normalize_phone(address.phone) if address else "",
        "shipping_is_billing": True,
        "order_items": order_items,
        "payment_method": "COD" if order.payment and order.payment.method == "cod" else "Prepaid",
        "sub_total": max(1.0, to_rupees(order.subtotal)),
        "length": dimensions["length"],
        "breadth": dimensions["breadth"],
        "height": dimensions["height"],
        "weight": weight,
    }


def validate_payload(payload: dict) -> dict[str, list[str]]:
    """Return every problem with ``payload`` keyed by field. Empty means valid."""
    errors: dict[str, list[str]] = {}

    def add(field: str, message: str) -> None:
        errors.setdefault(field, []).append(message)

    for field in _REQUIRED_FIELDS:
        value = payload.get(field)
        if value is None or str(value).strip() == "":
            add(field, "is required")

    if payload.get("billing_pincode") and not re.fullmatch(r"\d{6}", str(payload["billing_pincode"])):
        add("billing_pincode", "must be exactly 6 digits")
    if payload.get("billing_phone") and not re.fullmatch(r"\d{10}", str(payload["billing_phone"])):
        add("billing_phone", "must be exactly 10 digits without country code")
    if payload.get("payment_method") not in ("COD", "Prepaid"):
        add("payment_method", "must be COD or Prepaid")

    for field in _POSITIVE_NUMBERS:
        value = payload.get(field)
        if value is not None and not (isinstance(value, int | float) and value > 0):
            add(field, "must be a positive number")

    order_items = payload.get("order_items") or []
    if not order_items:
        add("order_items", "must not be empty")
    for index, item in enumerate(order_items):
        if not str(item.get("sku") or "").strip():
            add(f"order_items[{index}].sku", "is required")
        if not (isinstance(item.get("units"), int) and item["units"] > 0):
            add(f"order_items[{index}].units", "must be greater than zero")
        if not (isinstance(item.get("selling_price"), int | float) and item["selling_price"] > 0):
            add(f"order_items[{index}].selling_price", "must be greater than zero")

    return errors


def prepare_shipment_payload(order) -> dict:
    """Build and validate the payload, raising ValidationError on any problem."""
    payload = build_shipment_payload(order)
    errors = validate_payload(payload)
    if errors:
        raise ValidationError(errors)
    return payload
