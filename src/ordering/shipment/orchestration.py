"""Shipment orchestration — commands and handler for every carrier stage.

Each stage is idempotent and gated on the order's ShipmentRecord:

    CreateShipment    no shipment yet       → carrier create, ORDER_CREATED
    AssignAwb         shipment, no AWB      → carrier assign, AWB_ASSIGNED
    GeneratePickup    AWB assigned          → carrier pickup, PICKUP_GENERATED
    GenerateLabel     shipment              → label URL, LABEL_READY
    GenerateInvoice   shipment              → invoice URL, INVOICE_READY
                                              (carrier order id looked up
                                              when it was never returned)
    GenerateManifest  shipment              → manifest URL, MANIFEST_READY

Repeating a finished stage returns the stored result without calling the
carrier. Preconditions are checked before any network call. A carrier
timeout or 5xx leaves the order untouched (RetriableExternalError); a 4xx is
surfaced with field detail (TerminalExternalError); "already exists" is
treated as success after fetching the existing identifiers.

Handlers return a dict with ``stage``, ``outcome`` (``completed`` or
``already_completed``) and the stage's result fields.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.carrier import get_carrier
from ordering.carrier.port import CarrierDuplicate, CarrierRejected, CarrierUnavailable
from ordering.domain import ordering
from ordering.exceptions import RetriableExternalError, TerminalExternalError
from ordering.order.order import Order
from ordering.shipment.mapper import prepare_shipment_payload

logger = structlog.get_logger(__name__)

COMPLETED = "completed"
ALREADY_COMPLETED = "already_completed"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@ordering.command(part_of="Order")
class CreateShipment:
    """Create the carrier shipment for an order."""

    order_id = Identifier(required=True)


@ordering.command(part_of="Order")
class AssignAwb:
    """Assign an airway bill, optionally with a specific courier."""

    order_id = Identifier(required=True)
    courier_id = String(max_length=50)


@ordering.command(part_of="Order")
class GeneratePickup:
    """Request a courier pickup."""

    order_id = Identifier(required=True)


@ordering.command(part_of="Order")
class GenerateLabel:
    order_id = Identifier(required=True)


@ordering.command(part_of="Order")
class GenerateInvoice:
    order_id = Identifier(required=True)


@ordering.command(part_of="Order")
class GenerateManifest:
    order_id = Identifier(required=True)


STAGE_COMMANDS = {
    "create": CreateShipment,
    "assign-awb": AssignAwb,
    "pickup": GeneratePickup,
    "label": GenerateLabel,
    "invoice": GenerateInvoice,
    "manifest": GenerateManifest,
}


_DOCUMENT_STAGES = ("label", "invoice", "manifest")


def _result(stage: str, outcome: str, order: Order, **extra) -> dict:
    return {"stage": stage, "outcome": outcome, "order_id": str(order.id), **extra}


def existing_result(order: Order, stage: str) -> dict | None:
    """Return the stored result when ``stage`` already ran, else None.

    Raises ValidationError when the stage cannot run yet. No carrier call is
    made either way.
    """
    shipment = order.shipment

    if stage == "create":
        if shipment and shipment.shipment_id:
            return _result(stage, ALREADY_COMPLETED, order, shipment_id=shipment.shipment_id)
        order.assert_shippable()
        return None

    if stage == "assign-awb":
        if shipment and shipment.awb_code:
            return _result(
                stage,
                ALREADY_COMPLETED,
                order,
                awb_code=shipment.awb_code,
                courier_name=shipment.courier_name,
            )
        order.assert_shippable()
        if not shipment or not shipment.shipment_id:
            raise ValidationError({"shipment_id": ["Shipment must be created before assigning an AWB"]})
        return None

    if stage == "pickup":
        if shipment and shipment.pickup_requested_at:
            return _result(stage, ALREADY_COMPLETED, order, pickup_scheduled_for=shipment.pickup_scheduled_for)
        order.assert_shippable()
        if not shipment or not shipment.awb_code:
            raise ValidationError({"awb_code": ["AWB must be assigned before generating a pickup"]})
        return None

    if stage in _DOCUMENT_STAGES:
        url = getattr(shipment, f"{stage}_url", None) if shipment else None
        if url:
            return _result(stage, ALREADY_COMPLETED, order, url=url)
        if not shipment or not shipment.shipment_id:
            raise ValidationError({"shipment_id": [f"Shipment must be created before generating the {stage}"]})
        return None

    raise ValidationError({"stage": [f"Unknown shipment stage: {stage}"]})


def _call_carrier(stage: str, order_id: str, fn, *args, **kwargs):
    """Invoke the carrier, translating transport-level failures into domain errors."""
    try:
        return fn(*args, **kwargs)
    except CarrierUnavailable as exc:
        logger.warning("Carrier unavailable, stage left pending", stage=stage, order_id=order_id, error=exc.message)
        raise RetriableExternalError({"carrier": [exc.message]}, service="carrier") from exc
    except CarrierRejected as exc:
        logger.warning("Carrier rejected stage", stage=stage, order_id=order_id, error=exc.message)
        raise TerminalExternalError(exc.errors or {"carrier": [exc.message]}, service="carrier") from exc


# ---------------------------------------------------------------------------
# Command Handler
# ---------------------------------------------------------------------------
@ordering.command_handler(part_of=Order)
class ShipmentOrchestrationHandler:
    @handle(CreateShipment)
    def create_shipment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        done = existing_result(order, "create")
        if done:
            return done

        payload = prepare_shipment_payload(order)
        carrier = get_carrier()
        try:
            shipment = _call_carrier("create", str(order.id), carrier.create_order, payload)
        except CarrierDuplicate:
            shipment = _call_carrier("create", str(order.id), carrier.find_shipment, payload["order_id"])
            if shipment is None:
                raise RetriableExternalError(
                    {"carrier": ["Carrier reports the order exists but it could not be found yet"]},
                    service="carrier",
                ) from None
            logger.info("Carrier shipment already existed", order_id=str(order.id), shipment_id=shipment.shipment_id)

        order.record_shipment_created(shipment.shipment_id, shipment.carrier_order_id)
        repo.save(order)
        return _result("create", COMPLETED, order, shipment_id=shipment.shipment_id)

    @handle(AssignAwb)
    def assign_awb(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        done = existing_result(order, "assign-awb")
        if done:
            return done

        carrier = get_carrier()
        shipment_id = order.shipment.shipment_id
        try:
            assignment = _call_carrier("assign-awb", str(order.id), carrier.assign_awb, shipment_id, command.courier_id)
        except CarrierDuplicate:
            assignment = _call_carrier("assign-awb", str(order.id), carrier.get_awb, shipment_id)
            if assignment is None:
                raise RetriableExternalError(
                    {"carrier": ["Carrier reports an AWB exists but it could not be fetched yet"]},
                    service="carrier",
                ) from None

        order.record_awb(assignment.awb_code, assignment.courier_name, assignment.courier_id)
        repo.save(order)
        return _result(
            "assign-awb",
            COMPLETED,
            order,
            awb_code=order.shipment.awb_code,
            courier_name=order.shipment.courier_name,
        )

    @handle(GeneratePickup)
    def generate_pickup(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        done = existing_result(order, "pickup")
        if done:
            return done

        carrier = get_carrier()
        try:
            pickup = _call_carrier("pickup", str(order.id), carrier.generate_pickup, order.shipment.shipment_id)
            scheduled_for = pickup.scheduled_for
        except CarrierDuplicate:
            logger.info("Pickup was already requested with carrier", order_id=str(order.id))
            scheduled_for = None

        order.record_pickup(scheduled_for)
        repo.save(order)
        return _result("pickup", COMPLETED, order, pickup_scheduled_for=scheduled_for)

    def _generate_document(self, document: str, order_id: str) -> dict:
        repo = current_domain.repository_for(Order)
        order = repo.get(order_id)
        done = existing_result(order, document)
        if done:
            return done

        carrier = get_carrier()
        shipment = order.shipment
        if document == "label":
            url = _call_carrier(document, str(order.id), carrier.generate_label, shipment.shipment_id)
        elif document == "invoice":
            carrier_order_id = shipment.carrier_order_id or self._lookup_carrier_order_id(order)
            url = _call_carrier(document, str(order.id), carrier.generate_invoice, carrier_order_id)
        else:
            url = _call_carrier(
                document,
                str(order.id),
                carrier.generate_manifest,
                shipment.shipment_id,
                shipment.carrier_order_id,
            )

        order.record_document(document, url)
        repo.save(order)
        return _result(document, COMPLETED, order, url=url)

    def _lookup_carrier_order_id(self, order: Order) -> str:
        """Fetch and store a carrier order id the carrier did not return at creation."""
        reference = order.order_number or str(order.id)
        found = _call_carrier("invoice", str(order.id), get_carrier().find_shipment, reference)
        if found is None or not found.carrier_order_id:
            raise RetriableExternalError(
                {"carrier": ["Carrier order id for this shipment could not be found yet"]},
                service="carrier",
            )
        order.record_carrier_order_id(found.carrier_order_id)
        return order.shipment.carrier_order_id

    @handle(GenerateLabel)
    def generate_label(self, command):
        return self._generate_document("label", command.order_id)

    @handle(GenerateInvoice)
    def generate_invoice(self, command):
        return self._generate_document("invoice", command.order_id)

    @handle(GenerateManifest)
    def generate_manifest(self, command):
        return self._generate_document("manifest", command.order_id)
