"""Fake carrier adapter — deterministic carrier for testing and development.

Generates mock shipment ids, AWBs and document URLs and remembers what it
created, so duplicate handling behaves like the real carrier. Every call is
recorded in ``calls``; failures are injected with ``configure``.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from ordering.carrier.port import (
    AwbAssignment,
    CarrierDuplicate,
    CarrierPort,
    CarrierRejected,
    CarrierShipment,
    CarrierUnavailable,
    PickupRequest,
)

FAILURE_MODES = {"unavailable", "rejected", "duplicate"}


class FakeCarrier(CarrierPort):
    """Fake carrier that always succeeds by default."""

    def __init__(self):
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.failure_mode = "unavailable"
        self.failure_errors: dict = {}
        self.calls: list[dict] = []
        self.shipments: dict[str, CarrierShipment] = {}  # by order reference
        self.awbs: dict[str, AwbAssignment] = {}  # by shipment id

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Carrier unavailable",
        failure_mode: str = "unavailable",
        failure_errors: dict | None = None,
    ):
        """Configure the fake carrier behavior for testing."""
        if failure_mode not in FAILURE_MODES:
            raise ValueError(f"Unknown failure mode: {failure_mode}")
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.failure_mode = failure_mode
        self.failure_errors = failure_errors or {}

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self.should_succeed:
            return
        if self.failure_mode == "rejected":
            raise CarrierRejected(self.failure_reason, self.failure_errors)
        if self.failure_mode == "duplicate":
            raise CarrierDuplicate(self.failure_reason)
        raise CarrierUnavailable(self.failure_reason)

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def create_order(self, payload: dict) -> CarrierShipment:
        reference = payload["order_id"]
        self._record("create_order", order_id=reference)
        if reference in self.shipments:
            raise CarrierDuplicate(f"Order {reference} already exists")
        shipment = CarrierShipment(
            shipment_id=str(uuid4().int)[:9],
            carrier_order_id=str(uuid4().int)[:9],
        )
        self.shipments[reference] = shipment
        return shipment

    def find_shipment(self, order_reference: str) -> CarrierShipment | None:
        self.calls.append({"method": "find_shipment", "order_reference": order_reference})
        return self.shipments.get(order_reference)

    def assign_awb(self, shipment_id: str, courier_id: str | None = None) -> AwbAssignment:
        self._record("assign_awb", shipment_id=shipment_id, courier_id=courier_id)
        if shipment_id in self.awbs:
            raise CarrierDuplicate("AWB is already assigned")
        assignment = AwbAssignment(
            awb_code=f"FAKE{uuid4().hex[:10].upper()}",
            courier_name="Fake Express",
            courier_id=courier_id or "1",
        )
        self.awbs[shipment_id] = assignment
        return assignment

    def get_awb(self, shipment_id: str) -> AwbAssignment | None:
        self.calls.append({"method": "get_awb", "shipment_id": shipment_id})
        return self.awbs.get(shipment_id)

    def generate_pickup(self, shipment_id: str) -> PickupRequest:
        self._record("generate_pickup", shipment_id=shipment_id)
        scheduled = datetime.now(UTC) + timedelta(days=1)
        return PickupRequest(scheduled_for=scheduled.strftime("%Y-%m-%d"))

    def generate_label(self, shipment_id: str) -> str:
        self._record("generate_label", shipment_id=shipment_id)
        return f"https://fake-carrier.example.com/labels/{shipment_id}.pdf"

    def generate_invoice(self, carrier_order_id: str) -> str:
        self._record("generate_invoice", carrier_order_id=carrier_order_id)
        return f"https://fake-carrier.example.com/invoices/{carrier_order_id}.pdf"

    def generate_manifest(self, shipment_id: str, carrier_order_id: str | None = None) -> str:
        self._record("generate_manifest", shipment_id=shipment_id, carrier_order_id=carrier_order_id)
        return f"https://fake-carrier.example.com/manifests/{shipment_id}.pdf"

    def verify_webhook_signature(self, _payload: str, _signature: str) -> bool:
        # FakeCarrier accepts any signature (or empty signature) for testing
        return True
