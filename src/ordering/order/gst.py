"""GST invoice details — commands and handler."""

from protean import handle
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.order.order import Order


@ordering.command(part_of="Order")
class RecordGstDetails:
    order_id = Identifier(required=True)
    want_invoice = Boolean(default=False)
    gstin = String(max_length=15)
    legal_name = String(max_length=255)
    place_of_supply = String(max_length=100)
    email = String(max_length=254)
    tax_percent = Float(min_value=0.0)
    tax_amount = Integer(min_value=0)


@ordering.command(part_of="Order")
class AttachGstInvoice:
    order_id = Identifier(required=True)
    invoice_number = String(max_length=100)
    invoice_url = String(required=True, max_length=1000)


def gst_view(order: Order) -> dict:
    url, source = order.invoice()
    gst = order.gst
    return {
        "order_id": str(order.id),
        "gst_status": order.gst_status,
        "gstin": gst.gstin if gst else None,
        "legal_name": gst.legal_name if gst else None,
        "tax_percent": gst.tax_percent if gst else None,
        "tax_base": gst.tax_base if gst else None,
        "tax_amount": gst.tax_amount if gst else None,
        "invoice_number": gst.invoice_number if gst else None,
        "tax": order.tax,
        "total": order.total,
        "invoice_url": url,
        "invoice_source": source,
    }


@ordering.command_handler(part_of=Order)
class GstHandler:
    @handle(RecordGstDetails)
    def record_gst_details(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.record_gst_details(
            want_invoice=bool(command.want_invoice),
            gstin=command.gstin,
            legal_name=command.legal_name,
            place_of_supply=command.place_of_supply,
            email=command.email,
            tax_percent=command.tax_percent,
            tax_amount=command.tax_amount,
        )
        repo.save(order)
        return gst_view(order)

    @handle(AttachGstInvoice)
    def attach_gst_invoice(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.attach_gst_invoice(invoice_url=command.invoice_url, invoice_number=command.invoice_number)
        repo.save(order)
        return gst_view(order)
