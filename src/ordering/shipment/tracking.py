"""Shipment tracking — command and handler.

Applies carrier tracking webhooks to the ShipmentRecord. Updates are
deduplicated by the carrier's event id and routed either by order id or by
AWB.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.order import Order


@ordering.command(part_of="Order")
class RecordTrackingUpdate:
    """Record a tracking update reported by the carrier."""

    event_id = String(required=True, max_length=255)
    order_id = Identifier()
    awb_code = String(max_length=100)
    courier_name = String(max_length=255)
    current_status = String(max_length=100)
    tracking_url = String(max_length=1000)
    estimated_delivery = String(max_length=100)


@ordering.command_handler(part_of=Order)
class TrackingHandler:
    @handle(RecordTrackingUpdate)
    def record_tracking_update(self, command):
        repo = current_domain.repository_for(Order)
        if command.order_id:
            order = repo.get(command.order_id)
        elif command.awb_code:
            match = repo.find_by_awb(command.awb_code)
            if match is None:
                raise ObjectNotFoundError(f"No order found for AWB {command.awb_code}")
            order = repo.get(match.id)
        else:
            raise ValidationError({"order_id": ["Either order_id or awb_code is required"]})

        applied = order.record_tracking_update(
            event_id=command.event_id,
            awb_code=command.awb_code,
            courier_name=command.courier_name,
            current_status=command.current_status,
            tracking_url=command.tracking_url,
            estimated_delivery=command.estimated_delivery,
        )
        if applied:
            repo.save(order)
        return {"order_id": str(order.id), "status": "processed" if applied else "duplicate"}
