"""Tests for mapping an Order to the carrier payload and validating it locally."""

from datetime import UTC, datetime

import pytest
from ordering.order.order import Order
from ordering.shipment.mapper import (
    DEFAULT_PICKUP_NICKNAME,
    FALLBACK_EMAIL,
    build_shipment_payload,
    carrier_order_date,
    normalize_phone,
    pickup_nickname,
    prepare_shipment_payload,
    to_rupees,
    validate_payload,
)
from protean.exceptions import ValidationError

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "+91 98765 43210",
    "email": "asha@example.com",
    "line1": "12 MG Road",
    "line2": "Near Metro",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560 001",
}

ITEMS = [
    {"product_id": "prod-001", "name": "Brake Pad", "sku": "BP-001", "quantity": 2, "unit_price": 49900},
    {"product_id": "prod-002", "name": "Washer", "quantity": 1, "unit_price": 50},
]


def _order(**address_overrides):
    return Order.place(
        customer_id="cust-001",
        items_data=ITEMS,
        shipping_address=dict(ADDRESS, **address_overrides),
        payment_method="cod",
        order_number="ORD1700000000000123",
    )


class TestPhoneNormalisation:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+91 98765 43210", "9876543210"),
            ("919876543210", "9876543210"),
            ("98765-43210", "9876543210"),
            ("09876543210", "9876543210"),
            ("+44 7911 1234 5678", "44791112345678"),
            ("98765432101", "98765432101"),
            (None, ""),
        ],
    )
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected


class TestHelpers:
    def test_to_rupees(self):
        assert to_rupees(49900) == 499.0
        assert to_rupees(12345) == 123.45
        assert to_rupees(0) == 0.0

    def test_order_date_in_ist(self):
        moment = datetime(2026, 1, 15, 20, 0, tzinfo=UTC)
        assert carrier_order_date(moment) == "2026-01-16 01:30"

    def test_pickup_nickname_default(self, monkeypatch):
        monkeypatch.delenv("SHIPROCKET_PICKUP_NICKNAME", raising=False)
        assert pickup_nickname() == DEFAULT_PICKUP_NICKNAME

    def test_pickup_nickname_from_environment(self, monkeypatch):
        monkeypatch.setenv("SHIPROCKET_PICKUP_NICKNAME", " Warehouse 2 ")
        assert pickup_nickname() == "Warehouse 2"


class TestBuildPayload:
    def test_maps_customer_and_address(self):
        payload = build_shipment_payload(_order())

        assert payload["order_id"] == "ORD1700000000000123"
        assert payload["billing_customer_name"] == "Asha"
        assert payload["billing_last_name"] == "Rao"
        assert payload["billing_address"] == "12 MG Road, Near Metro"
        assert payload["billing_pincode"] == "560001"
        assert payload["billing_phone"] == "9876543210"
        assert payload["billing_email"] == "asha@example.com"
        assert payload["billing_country"] == "India"
        assert payload["payment_method"] == "COD"

    def test_items_get_synthesised_sku_and_minimum_price(self):
        payload = build_shipment_payload(_order())
        washer = next(item for item in payload["order_items"] if item["name"] == "Washer")
        assert washer["sku"] == "SKU-prod-002"
        assert washer["selling_price"] == 1.0

    def test_default_dimensions_and_weight(self):
        payload = build_shipment_payload(_order())
        assert (payload["length"], payload["breadth"], payload["height"]) == (12, 10, 4)
        assert payload["weight"] == 0.75

    def test_package_overrides_dimensions(self):
        order = _order()
        order.save_package(length_cm=30.0, breadth_cm=20.0, height_cm=10.0, weight_kg=2.5)
        payload = build_shipment_payload(order)
        assert (payload["length"], payload["breadth"], payload["height"]) == (30.0, 20.0, 10.0)
        assert payload["weight"] == 2.5

    def test_email_fallback(self):
        payload = build_shipment_payload(_order(email=None))
        assert payload["billing_email"] == FALLBACK_EMAIL

    def test_prepaid_payment_method(self):
        order = Order.place(
            customer_id="cust-001",
            items_data=ITEMS,
            shipping_address=ADDRESS,
            payment_method="prepaid",
        )
        assert build_shipment_payload(order)["payment_method"] == "Prepaid"

    def test_sub_total_in_rupees(self):
        payload = build_shipment_payload(_order())
        assert payload["sub_total"] == to_rupees(2 * 49900 + 50)


class TestValidation:
    def test_valid_payload_has_no_errors(self):
        assert validate_payload(build_shipment_payload(_order())) == {}

    def test_foreign_number_is_not_truncated(self):
        payload = build_shipment_payload(_order(phone="+44 7911 1234 5678"))
        assert payload["billing_phone"] == "44791112345678"
        assert "billing_phone" in validate_payload(payload)

    def test_collects_every_offending_field(self):
        payload = build_shipment_payload(_order(phone="12345", postal_code="5600"))
        errors = validate_payload(payload)
        assert set(errors) == {"billing_phone", "billing_pincode"}

    def test_missing_fields_reported(self):
        errors = validate_payload({"payment_method": "Cash"})
        assert "order_id" in errors
        assert "billing_phone" in errors
        assert "payment_method" in errors
        assert "order_items" in errors

    def test_item_problems_reported_by_index(self):
        payload = build_shipment_payload(_order())
        payload["order_items"][0]["sku"] = ""
        payload["order_items"][0]["units"] = 0
        errors = validate_payload(payload)
        assert "order_items[0].sku" in errors
        assert "order_items[0].units" in errors

    def test_prepare_raises_one_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            prepare_shipment_payload(_order(phone="12345", postal_code="5600"))
        assert "billing_phone" in exc.value.messages
        assert "billing_pincode" in exc.value.messages
