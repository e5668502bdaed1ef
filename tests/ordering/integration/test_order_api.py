"""Integration tests for the Ordering API endpoints via TestClient."""

import asyncio
import json
import threading

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from ordering.api import order_router, register_ordering_exception_handlers, webhook_router
from ordering.domain import ordering
from ordering.gateway.fake_adapter import FakeGateway
from ordering.order.order import Order
from ordering.shipment.inflight import stage_registry
from protean import current_domain

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "+91 98765 43210",
    "email": "asha@example.com",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
}

ITEMS = [{"product_id": "prod-001", "name": "Brake Pad", "sku": "BP-001", "quantity": 2, "unit_price": 49900}]


@pytest.fixture()
def app():
    app = FastAPI()

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        with ordering.domain_context():
            return await call_next(request)

    register_ordering_exception_handlers(app)
    app.include_router(order_router)
    app.include_router(webhook_router)
    return app


@pytest.fixture()
def client(app):
    return TestClient(app)


def _place_order(client, payment_method="cod", **overrides):
    body = {
        "customer_id": "cust-001",
        "items": ITEMS,
        "shipping_address": ADDRESS,
        "payment_method": payment_method,
        "shipping": 5000,
    }
    body.update(overrides)
    response = client.post("/orders", json=body)
    assert response.status_code == 201
    return response.json()


def _captured_webhook(gateway_order_id, payment_id="pay_1"):
    return json.dumps(
        {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": payment_id, "order_id": gateway_order_id, "amount": 104800}}},
        }
    )


class TestPlaceOrderEndpoint:
    def test_place_cod_order(self, client):
        data = _place_order(client)
        assert data["order_number"].startswith("ORD")
        assert data["gateway_order_id"] is None

        response = client.get(f"/orders/{data['order_id']}")
        assert response.status_code == 200
        order = response.json()
        assert order["status"] == "pending"
        assert order["subtotal"] == 99800
        assert order["total"] == 104800
        assert order["payment"]["status"] == "cod_pending"

    def test_place_prepaid_order_returns_gateway_order(self, client):
        data = _place_order(client, payment_method="prepaid")
        assert data["gateway_order_id"].startswith("order_")

    def test_malformed_body_rejected(self, client):
        response = client.post("/orders", json={"customer_id": "cust-001", "items": []})
        assert response.status_code == 422

    def test_domain_validation_is_400(self, client):
        response = client.post(
            "/orders",
            json={
                "customer_id": "cust-001",
                "items": ITEMS,
                "shipping_address": ADDRESS,
                "payment_method": "barter",
            },
        )
        assert response.status_code == 400
        assert "payment_method" in response.json()["error"]

    def test_gateway_outage_is_503(self, client, gateway):
        gateway.configure(should_succeed=False)
        response = client.post(
            "/orders",
            json={"customer_id": "cust-001", "items": ITEMS, "shipping_address": ADDRESS, "payment_method": "prepaid"},
        )
        assert response.status_code == 503
        assert response.json()["status"] == "pending"

    def test_unknown_order_is_404(self, client):
        response = client.get("/orders/does-not-exist")
        assert response.status_code == 404


class TestLifecycleEndpoints:
    def test_accept_advance(self, client):
        order_id = _place_order(client)["order_id"]

        response = client.post(f"/orders/{order_id}/accept")
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert response.json()["version"] == 2

        response = client.post(f"/orders/{order_id}/advance", json={"expected_version": 2})
        assert response.status_code == 200
        assert response.json()["status"] == "processing"

    def test_stale_version_is_409(self, client):
        order_id = _place_order(client)["order_id"]
        client.post(f"/orders/{order_id}/accept")

        response = client.post(f"/orders/{order_id}/advance", json={"expected_version": 1})
        assert response.status_code == 409

    def test_cancel_twice_is_409(self, client):
        order_id = _place_order(client)["order_id"]
        response = client.post(f"/orders/{order_id}/cancel", json={"reason": "Customer request"})
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = client.post(f"/orders/{order_id}/cancel", json={"reason": "Customer request"})
        assert response.status_code == 409

    def test_status_override(self, client):
        order_id = _place_order(client)["order_id"]
        response = client.post(
            f"/orders/{order_id}/status-override",
            json={"orderStatus": "shipped", "justification": "Shipped offline", "actor": "ops@example.com"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "shipped"

    def test_blank_override_justification_is_400(self, client):
        order_id = _place_order(client)["order_id"]
        response = client.post(
            f"/orders/{order_id}/status-override",
            json={"status": "shipped", "justification": " ", "actor": "ops@example.com"},
        )
        assert response.status_code == 400
        assert "justification" in response.json()["error"]

    def test_read_model_refreshed_after_write(self, client):
        order_id = _place_order(client)["order_id"]
        assert client.get(f"/orders/{order_id}").json()["status"] == "pending"

        client.post(f"/orders/{order_id}/accept")

        assert client.get(f"/orders/{order_id}").json()["status"] == "confirmed"

    def test_cod_collection(self, client):
        order_id = _place_order(client)["order_id"]
        response = client.post(f"/orders/{order_id}/cod-collection")
        assert response.status_code == 200
        assert response.json()["payment_status"] == "cod_paid"


class TestPaymentEndpoints:
    def test_checkout_verification(self, client):
        data = _place_order(client, payment_method="prepaid")
        goid = data["gateway_order_id"]

        response = client.post(
            f"/orders/{data['order_id']}/payment/verify",
            json={
                "gateway_order_id": goid,
                "gateway_payment_id": "pay_1",
                "signature": FakeGateway.sign(goid, "pay_1"),
            },
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        assert client.get(f"/orders/{data['order_id']}").json()["is_paid"] is True

    def test_checkout_bad_signature_is_400(self, client):
        data = _place_order(client, payment_method="prepaid")
        response = client.post(
            f"/orders/{data['order_id']}/payment/verify",
            json={"gateway_order_id": data["gateway_order_id"], "gateway_payment_id": "pay_1", "signature": "forged"},
        )
        assert response.status_code == 400

    def test_webhook_payment_and_replay(self, client, event_bus):
        data = _place_order(client, payment_method="prepaid")
        body = _captured_webhook(data["gateway_order_id"])
        headers = {"X-Razorpay-Signature": "test-signature", "Content-Type": "application/json"}

        first = client.post("/webhooks/gateway", content=body, headers=headers)
        second = client.post("/webhooks/gateway", content=body, headers=headers)

        assert first.json() == {"status": "processed", "order_id": data["order_id"]}
        assert second.json()["status"] == "duplicate"
        assert len(event_bus.messages("payment.captured")) == 1

    def test_webhook_bad_signature_is_401(self, client):
        data = _place_order(client, payment_method="prepaid")
        response = client.post(
            "/webhooks/gateway",
            content=_captured_webhook(data["gateway_order_id"]),
            headers={"X-Razorpay-Signature": "nope"},
        )
        assert response.status_code == 401

    def test_webhook_for_unknown_order_is_ignored(self, client):
        response = client.post(
            "/webhooks/gateway",
            content=_captured_webhook("order_unknown"),
            headers={"X-Razorpay-Signature": "test-signature"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_unhandled_webhook_event_is_ignored(self, client):
        response = client.post(
            "/webhooks/gateway",
            content=json.dumps({"event": "refund.processed", "payload": {}}),
            headers={"X-Razorpay-Signature": "test-signature"},
        )
        assert response.json()["status"] == "ignored"


class TestShipmentEndpoints:
    def test_stage_acknowledged_then_completed(self, client, event_bus):
        order_id = _place_order(client)["order_id"]

        response = client.post(f"/orders/{order_id}/shipment/create")

        assert response.status_code == 202
        assert response.json()["status"] == "in_progress"
        shipment = client.get(f"/orders/{order_id}/shipment").json()
        assert shipment["shipment_id"]
        assert shipment["in_flight"] == []
        assert event_bus.messages("shipment.stage-completed")[0]["stage"] == "create"

    def test_finished_stage_answers_200(self, client, carrier):
        order_id = _place_order(client)["order_id"]
        client.post(f"/orders/{order_id}/shipment/create")

        response = client.post(f"/orders/{order_id}/shipment/create")

        assert response.status_code == 200
        assert response.json()["outcome"] == "already_completed"
        assert len(carrier.calls_to("create_order")) == 1

    def test_wait_runs_inline(self, client):
        order_id = _place_order(client)["order_id"]
        client.post(f"/orders/{order_id}/shipment/create?wait=true")

        response = client.post(f"/orders/{order_id}/shipment/assign-awb?wait=true", json={"courier_id": "7"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "completed"
        assert response.json()["awb_code"].startswith("FAKE")

    def test_stage_in_flight_is_409(self, client, carrier):
        order_id = _place_order(client)["order_id"]
        stage_registry.claim(order_id, "create")

        response = client.post(f"/orders/{order_id}/shipment/create")

        assert response.status_code == 409
        assert response.json()["status"] == "in_progress"
        assert carrier.calls == []

    def test_precondition_failure_is_400(self, client, carrier):
        order_id = _place_order(client)["order_id"]
        response = client.post(f"/orders/{order_id}/shipment/assign-awb")
        assert response.status_code == 400
        assert carrier.calls == []

    def test_carrier_outage_is_503_when_waiting(self, client, carrier):
        order_id = _place_order(client)["order_id"]
        carrier.configure(should_succeed=False, failure_mode="unavailable")

        response = client.post(f"/orders/{order_id}/shipment/create?wait=true")

        assert response.status_code == 503
        assert response.json()["service"] == "carrier"

    def test_carrier_rejection_is_422_when_waiting(self, client, carrier):
        order_id = _place_order(client)["order_id"]
        carrier.configure(
            should_succeed=False,
            failure_mode="rejected",
            failure_reason="Invalid pincode",
            failure_errors={"billing_pincode": ["Not serviceable"]},
        )

        response = client.post(f"/orders/{order_id}/shipment/create?wait=true")

        assert response.status_code == 422
        assert response.json()["error"] == {"billing_pincode": ["Not serviceable"]}

    def test_background_outage_announced_pending(self, client, carrier, event_bus):
        order_id = _place_order(client)["order_id"]
        carrier.configure(should_succeed=False, failure_mode="unavailable")

        response = client.post(f"/orders/{order_id}/shipment/create")

        assert response.status_code == 202
        assert event_bus.messages("shipment.stage-pending")[0]["order_id"] == order_id
        assert client.get(f"/orders/{order_id}/shipment").json()["shipment_id"] is None

    def test_carrier_tracking_webhook(self, client):
        order_id = _place_order(client)["order_id"]
        client.post(f"/orders/{order_id}/shipment/create?wait=true")
        awb = client.post(f"/orders/{order_id}/shipment/assign-awb?wait=true").json()["awb_code"]
        body = {"awb": awb, "current_status": "IN TRANSIT", "current_timestamp": "2024-05-01 10:00:00", "sr_order_id": 1}

        first = client.post("/webhooks/carrier", json=body, headers={"x-api-key": "token"})
        second = client.post("/webhooks/carrier", json=body, headers={"x-api-key": "token"})

        assert first.json() == {"status": "processed", "order_id": order_id}
        assert second.json()["status"] == "duplicate"
        assert client.get(f"/orders/{order_id}/shipment").json()["current_status"] == "IN TRANSIT"


class TestShippingCostEndpoints:
    def test_upload_package_and_link(self, client):
        order_id = _place_order(client)["order_id"]

        upload = client.post(f"/orders/{order_id}/package/uploads", json={"filename": "box.png", "content_type": "image/png", "size": 1000})
        assert upload.status_code == 200
        public_url = upload.json()["public_url"]

        package = client.put(f"/orders/{order_id}/package", json={"weight_kg": 1.2, "images": [public_url]})
        assert package.status_code == 200
        assert package.json()["images"] == [public_url]

        link = client.post(f"/orders/{order_id}/shipping-payment-link", json={"amount": 7500})
        assert link.status_code == 201
        assert link.json()["status"] == "pending"

        again = client.post(f"/orders/{order_id}/shipping-payment-link", json={"amount": 7500})
        assert again.status_code == 409

    def test_link_paid_through_webhook(self, client):
        order_id = _place_order(client)["order_id"]
        link_id = client.post(f"/orders/{order_id}/shipping-payment-link", json={"amount": 7500}).json()["link_id"]
        body = json.dumps(
            {
                "event": "payment_link.paid",
                "payload": {
                    "payment_link": {"entity": {"id": link_id}},
                    "payment": {"entity": {"id": "pay_ship_1", "amount": 7500, "notes": {"purpose": "shipping_payment"}}},
                },
            }
        )

        response = client.post("/webhooks/gateway", content=body, headers={"X-Razorpay-Signature": "test-signature"})

        assert response.json()["status"] == "processed"
        order = client.get(f"/orders/{order_id}").json()
        assert order["shipping_payment"]["status"] == "paid"
        assert order["shipping_payment"]["amount_paid"] == 7500

    def test_link_expiry_through_webhook(self, client):
        order_id = _place_order(client)["order_id"]
        link_id = client.post(f"/orders/{order_id}/shipping-payment-link", json={"amount": 7500}).json()["link_id"]
        body = json.dumps({"event": "payment_link.expired", "payload": {"payment_link": {"entity": {"id": link_id}}}})

        client.post("/webhooks/gateway", content=body, headers={"X-Razorpay-Signature": "test-signature"})

        assert current_domain.repository_for(Order).get(order_id).shipping_payment.status == "expired"


class TestGstEndpoints:
    def test_gst_details_and_invoice(self, client):
        order_id = _place_order(client, shipping=0, items=[dict(ITEMS[0], quantity=1, unit_price=1000)])["order_id"]

        details = client.put(
            f"/orders/{order_id}/gst",
            json={"want_invoice": True, "gstin": "29ABCDE1234F1Z5", "legal_name": "Rao Motors", "tax_percent": 18},
        )
        assert details.status_code == 200
        assert details.json()["tax_amount"] == 180
        assert details.json()["total"] == 1180

        client.post(
            f"/orders/{order_id}/gst/invoice",
            json={"invoice_url": "https://cdn.example.com/invoices/INV-1.pdf", "invoice_number": "INV-1"},
        )

        invoice = client.get(f"/orders/{order_id}/invoice").json()
        assert invoice == {
            "order_id": order_id,
            "url": "https://cdn.example.com/invoices/INV-1.pdf",
            "source": "gst",
        }

    def test_invalid_gstin_is_400(self, client):
        order_id = _place_order(client)["order_id"]
        response = client.put(f"/orders/{order_id}/gst", json={"want_invoice": True, "gstin": "X", "legal_name": "Y"})
        assert response.status_code == 400
        assert "gstin" in response.json()["error"]

    def test_invoice_without_any_is_empty(self, client):
        order_id = _place_order(client)["order_id"]
        assert client.get(f"/orders/{order_id}/invoice").json() == {"order_id": order_id, "url": None, "source": None}


class TestSlowCollaborators:
    @pytest.mark.asyncio
    async def test_slow_carrier_call_does_not_stall_other_requests(self, app, carrier, monkeypatch):
        release = threading.Event()
        create_order = carrier.create_order

        def stalled_create_order(payload):
            release.wait(timeout=5)
            return create_order(payload)

        monkeypatch.setattr(carrier, "create_order", stalled_create_order)
        body = {"customer_id": "cust-001", "items": ITEMS, "shipping_address": ADDRESS, "payment_method": "cod"}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            order_id = (await http.post("/orders", json=body)).json()["order_id"]
            stage = asyncio.create_task(http.post(f"/orders/{order_id}/shipment/create?wait=true"))
            await asyncio.sleep(0.05)

            read = await http.get(f"/orders/{order_id}")

            assert read.status_code == 200
            assert not stage.done()
            release.set()
            response = await stage

        assert response.status_code == 200
        assert response.json()["outcome"] == "completed"
