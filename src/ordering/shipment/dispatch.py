"""Shipment stage dispatch — synchronous and background execution.

``run_stage`` executes a stage inline while holding its in-flight slot. The
HTTP layer uses the background pair instead: ``start_stage`` checks the
preconditions and claims the slot before the request is acknowledged, and
``complete_stage`` (run as a background task) executes the stage, announces
the outcome on the event bus and releases the slot.

Outcomes published on the bus:
    shipment.stage-completed  the stage ran (or had already run)
    shipment.stage-pending    the carrier was unavailable; retry later
    shipment.stage-failed     the stage was rejected; fix and resubmit
"""

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.bus import get_event_bus
from ordering.domain import ordering, process
from ordering.exceptions import ConflictError, RetriableExternalError
from ordering.order.order import Order, OrderStatus
from ordering.shipment.inflight import stage_registry
from ordering.shipment.orchestration import STAGE_COMMANDS, existing_result
from ordering.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)


def _command(stage: str, order_id: str, params: dict | None = None):
    if stage not in STAGE_COMMANDS:
        raise ValidationError({"stage": [f"Unknown shipment stage: {stage}"]})
    return STAGE_COMMANDS[stage](order_id=order_id, **(params or {}))


def run_stage(stage: str, order_id: str, **params) -> dict:
    """Execute a stage inline, rejecting concurrent duplicates."""
    command = _command(stage, order_id, params)
    with stage_registry.hold(order_id, stage):
        return process(command)


def start_stage(stage: str, order_id: str) -> dict | None:
    """Validate a stage and claim its slot for background execution.

    Returns the stored result if the stage already ran (nothing is claimed),
    otherwise None after claiming.
    """
    order = current_domain.repository_for(Order).get(order_id)
    result = existing_result(order, stage)
    if result is not None:
        return result
    stage_registry.claim(order_id, stage)
    return None


def complete_stage(stage: str, order_id: str, params: dict | None = None) -> None:
    """Background body: run the claimed stage and announce the outcome."""
    bus = get_event_bus()
    add_context(order_id=order_id, stage=stage)
    try:
        with ordering.domain_context():
            result = process(_command(stage, order_id, params))
        bus.publish("shipment.stage-completed", result)
        logger.info("Shipment stage completed", outcome=result.get("outcome"))
    except RetriableExternalError as exc:
        bus.publish(
            "shipment.stage-pending",
            {"stage": stage, "order_id": order_id, "status": "pending", "errors": exc.messages},
        )
    except (ValidationError, ConflictError, ObjectNotFoundError) as exc:
        messages = getattr(exc, "messages", None) or {"_entity": [str(exc)]}
        logger.warning("Shipment stage failed", errors=messages)
        bus.publish(
            "shipment.stage-failed",
            {"stage": stage, "order_id": order_id, "status": "failed", "errors": messages},
        )
    except Exception:
        logger.exception("Shipment stage crashed")
        bus.publish(
            "shipment.stage-failed",
            {"stage": stage, "order_id": order_id, "status": "failed", "errors": {"_entity": ["internal error"]}},
        )
        raise
    finally:
        stage_registry.release(order_id, stage)
        clear_context()


def shipment_view(order: Order) -> dict:
    """Polling view of the shipment record, including stages still running."""
    shipment = order.shipment
    fields = (
        "shipment_id",
        "carrier_order_id",
        "awb_code",
        "courier_name",
        "label_url",
        "invoice_url",
        "manifest_url",
        "pickup_scheduled_for",
        "tracking_url",
        "current_status",
        "estimated_delivery",
        "status",
    )
    view = {name: getattr(shipment, name, None) if shipment else None for name in fields}
    view["pickup_requested_at"] = shipment.pickup_requested_at if shipment else None
    view["order_id"] = str(order.id)
    view["order_status"] = order.status
    view["in_flight"] = stage_registry.in_flight(str(order.id))
    view["cancelled"] = order.status == OrderStatus.CANCELLED.value
    return view
