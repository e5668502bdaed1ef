"""Tests for the Shiprocket carrier adapter against a mocked HTTP transport."""

import json

import httpx
import pytest
from ordering.carrier.port import CarrierDuplicate, CarrierRejected, CarrierUnavailable
from ordering.carrier.shiprocket_adapter import ShiprocketCarrier


class Recorder:
    """Mock transport handler that answers from a route table and records requests."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes[(request.method, request.url.path)]
        if callable(answer):
            return answer(request)
        return answer

    def paths(self):
        return [request.url.path for request in self.requests]


LOGIN = ("POST", "/v1/external/auth/login")
CREATE = ("POST", "/v1/external/orders/create/adhoc")
ASSIGN = ("POST", "/v1/external/courier/assign/awb")


def _carrier(routes, **kwargs):
    recorder = Recorder({LOGIN: httpx.Response(200, json={"token": "tok-1"}), **routes})
    carrier = ShiprocketCarrier(
        email="ops@example.com",
        password="secret",
        webhook_token="hook-token",
        backoff=0,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )
    return carrier, recorder


class TestAuthentication:
    def test_token_cached_between_calls(self):
        carrier, recorder = _carrier({CREATE: httpx.Response(200, json={"shipment_id": 11, "order_id": 22})})

        carrier.create_order({"order_id": "ORD1"})
        carrier.create_order({"order_id": "ORD2"})

        assert recorder.paths().count("/v1/external/auth/login") == 1
        assert recorder.requests[1].headers["Authorization"] == "Bearer tok-1"

    def test_unauthorised_answer_logs_in_again(self):
        answers = iter([httpx.Response(401, json={"message": "Token expired"}), httpx.Response(200, json={"shipment_id": 11})])
        carrier, recorder = _carrier({CREATE: lambda request: next(answers)})

        shipment = carrier.create_order({"order_id": "ORD1"})

        assert shipment.shipment_id == "11"
        assert recorder.paths().count("/v1/external/auth/login") == 2

    def test_login_failure_is_unavailable(self):
        carrier, _ = _carrier({LOGIN: httpx.Response(403, json={"message": "Bad credentials"})})
        with pytest.raises(CarrierUnavailable):
            carrier.create_order({"order_id": "ORD1"})


class TestErrorMapping:
    def test_server_error_is_unavailable(self):
        carrier, _ = _carrier({CREATE: httpx.Response(502, text="Bad gateway")})
        with pytest.raises(CarrierUnavailable):
            carrier.create_order({"order_id": "ORD1"})

    def test_client_error_is_rejected_with_fields(self):
        carrier, _ = _carrier(
            {
                CREATE: httpx.Response(
                    422,
                    json={"message": "Oops! Invalid Data.", "errors": {"billing_pincode": ["The billing pincode must be 6 digits."]}},
                )
            }
        )
        with pytest.raises(CarrierRejected) as exc:
            carrier.create_order({"order_id": "ORD1"})
        assert exc.value.errors == {"billing_pincode": ["The billing pincode must be 6 digits."]}

    def test_already_exists_is_duplicate(self):
        carrier, _ = _carrier({CREATE: httpx.Response(400, json={"message": "Order Id already exists"})})
        with pytest.raises(CarrierDuplicate):
            carrier.create_order({"order_id": "ORD1"})

    def test_connection_errors_retried(self):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"shipment_id": 11})

        carrier, _ = _carrier({CREATE: flaky})

        assert carrier.create_order({"order_id": "ORD1"}).shipment_id == "11"
        assert len(attempts) == 3

    def test_connection_errors_exhausted(self):
        def down(request):
            raise httpx.ConnectError("connection refused", request=request)

        carrier, _ = _carrier({CREATE: down}, max_attempts=2)
        with pytest.raises(CarrierUnavailable):
            carrier.create_order({"order_id": "ORD1"})

    def test_timeout_is_not_retried(self):
        attempts = []

        def slow(request):
            attempts.append(request)
            raise httpx.ReadTimeout("read timed out", request=request)

        carrier, _ = _carrier({CREATE: slow})
        with pytest.raises(CarrierUnavailable):
            carrier.create_order({"order_id": "ORD1"})
        assert len(attempts) == 1


class TestPortOperations:
    def test_find_shipment_matches_channel_order_id(self):
        body = {
            "data": [
                {"id": 1, "channel_order_id": "ORD0", "shipments": [{"id": 5}]},
                {"id": 2, "channel_order_id": "ORD1", "shipments": [{"id": 6}]},
            ]
        }
        carrier, recorder = _carrier({("GET", "/v1/external/orders"): httpx.Response(200, json=body)})

        shipment = carrier.find_shipment("ORD1")

        assert shipment.shipment_id == "6"
        assert shipment.carrier_order_id == "2"
        assert recorder.requests[-1].url.params["search"] == "ORD1"

    def test_assign_awb(self):
        body = {
            "awb_assign_status": 1,
            "response": {"data": {"awb_code": "AWB123", "courier_name": "Delhivery", "courier_company_id": 10}},
        }
        carrier, recorder = _carrier({ASSIGN: httpx.Response(200, json=body)})

        assignment = carrier.assign_awb("11", courier_id="10")

        assert assignment.awb_code == "AWB123"
        assert assignment.courier_id == "10"
        assert json.loads(recorder.requests[-1].content) == {"shipment_id": "11", "courier_id": "10"}

    def test_awb_already_assigned_is_duplicate(self):
        body = {"awb_assign_status": 0, "response": {"data": {"awb_assign_error": "AWB is already assigned"}}}
        carrier, _ = _carrier({ASSIGN: httpx.Response(200, json=body)})
        with pytest.raises(CarrierDuplicate):
            carrier.assign_awb("11")

    def test_pickup_already_queued_is_success(self):
        carrier, _ = _carrier(
            {("POST", "/v1/external/courier/generate/pickup"): httpx.Response(400, json={"message": "Already in Pickup Queue"})}
        )
        pickup = carrier.generate_pickup("11")
        assert pickup.scheduled_for is None

    def test_manifest_falls_back_to_print(self):
        carrier, recorder = _carrier(
            {
                ("POST", "/v1/external/manifests/generate"): httpx.Response(400, json={"message": "Manifest already generated"}),
                ("POST", "/v1/external/manifests/print"): httpx.Response(200, json={"manifest_url": "https://sr.example.com/m.pdf"}),
            }
        )

        assert carrier.generate_manifest("11", "22") == "https://sr.example.com/m.pdf"
        assert json.loads(recorder.requests[-1].content) == {"order_ids": ["22"]}

    def test_label_without_url_is_rejected(self):
        carrier, _ = _carrier({("POST", "/v1/external/courier/generate/label"): httpx.Response(200, json={"label_created": 0})})
        with pytest.raises(CarrierRejected):
            carrier.generate_label("11")


class TestWebhookToken:
    def test_token_compared(self):
        carrier, _ = _carrier({})
        assert carrier.verify_webhook_signature("{}", "hook-token") is True
        assert carrier.verify_webhook_signature("{}", "other") is False

    def test_unconfigured_token_rejects(self):
        carrier = ShiprocketCarrier(email="a", password="b", transport=httpx.MockTransport(Recorder({})))
        assert carrier.verify_webhook_signature("{}", "") is False
