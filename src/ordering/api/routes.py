"""FastAPI routes for the Ordering domain — orders, shipments and webhooks."""

import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from ordering.api.schemas import (
    AssignAwbRequest,
    CancelOrderRequest,
    ClosePaymentLinkRequest,
    CreatePaymentLinkRequest,
    GstDetailsRequest,
    GstInvoiceRequest,
    InvoiceResponse,
    OrderStatusResponse,
    OverrideStatusRequest,
    PackageUploadRequest,
    PackageUploadResponse,
    PaymentStatusResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    SavePackageRequest,
    TrackingWebhookRequest,
    VerifyPaymentRequest,
    VersionedRequest,
    WebhookAckResponse,
)
from ordering.cache import get_read_cache
from ordering.carrier import get_carrier
from ordering.domain import process
from ordering.exceptions import ConflictError
from ordering.gateway import get_gateway
from ordering.order.creation import PlaceOrder
from ordering.order.gst import AttachGstInvoice, RecordGstDetails
from ordering.order.lifecycle import AcceptOrder, AdvanceOrder, CancelOrder, OverrideOrderStatus
from ordering.order.order import Order
from ordering.order.payment import ConfirmCodCollection, RecordGatewayPayment, RecordGatewayPaymentFailure
from ordering.order.shipping_cost import (
    ApplyShippingPayment,
    CloseShippingPaymentLink,
    RequestPackageImageUpload,
    SavePackage,
    send_shipping_payment_link,
)
from ordering.shipment.dispatch import complete_stage, run_stage, shipment_view, start_stage
from ordering.shipment.inflight import stage_registry
from ordering.shipment.tracking import RecordTrackingUpdate

logger = structlog.get_logger(__name__)


async def _process(command):
    """Run a command on the threadpool; handlers may block on carrier, gateway or storage I/O."""
    return await run_in_threadpool(process, command)


def _load(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def order_view(order: Order) -> dict:
    """Read model for a single order."""
    invoice_url, invoice_source = order.invoice()
    payment = order.payment
    package = order.shipping_package
    shipping_payment = order.shipping_payment
    return {
        "order_id": str(order.id),
        "order_number": order.display_order_number,
        "customer_id": str(order.customer_id),
        "status": order.status,
        "version": order.version,
        "items": [
            {
                "product_id": item.product_id,
                "name": item.name,
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "line_total": item.line_total,
            }
            for item in order.items or []
        ],
        "total_items": order.total_items,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "shipping": order.shipping,
        "total": order.total,
        "currency": order.currency,
        "payment": {
            "method": payment.method,
            "status": payment.status,
            "gateway_order_id": payment.gateway_order_id,
            "gateway_payment_id": payment.gateway_payment_id,
            "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        }
        if payment
        else None,
        "is_paid": order.is_paid,
        "is_delivered": order.is_delivered,
        "shipment": shipment_view(order) if order.shipment else None,
        "shipping_package": {
            "length_cm": package.length_cm,
            "breadth_cm": package.breadth_cm,
            "height_cm": package.height_cm,
            "weight_kg": package.weight_kg,
            "notes": package.notes,
            "images": package.image_urls,
        }
        if package
        else None,
        "shipping_payment": {
            "link_id": shipping_payment.link_id,
            "short_url": shipping_payment.short_url,
            "status": shipping_payment.status,
            "amount": shipping_payment.amount,
            "amount_paid": shipping_payment.amount_paid,
            "currency": shipping_payment.currency,
        }
        if shipping_payment
        else None,
        "gst_status": order.gst_status,
        "invoice_url": invoice_url,
        "invoice_source": invoice_source,
        "cancellation_reason": order.cancellation_reason,
    }


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=PlaceOrderResponse)
async def place_order(body: PlaceOrderRequest) -> PlaceOrderResponse:
    command = PlaceOrder(
        customer_id=body.customer_id,
        items=json.dumps([item.model_dump() for item in body.items]),
        shipping_address=json.dumps(body.shipping_address.model_dump()),
        billing_address=json.dumps(body.billing_address.model_dump()) if body.billing_address else None,
        payment_method=body.payment_method,
        subtotal=body.subtotal,
        tax=body.tax,
        shipping=body.shipping,
        total=body.total,
        currency=body.currency,
        order_number=body.order_number,
    )
    order_id = await _process(command)
    order = _load(order_id)
    return PlaceOrderResponse(
        order_id=order_id,
        order_number=order.order_number,
        gateway_order_id=order.payment.gateway_order_id,
    )


@order_router.get("/{order_id}")
async def get_order(order_id: str) -> dict:
    cache = get_read_cache()
    view = cache.get(order_id)
    if view is None:
        view = order_view(_load(order_id))
        cache.set(order_id, view)
    if view["shipment"] is not None:
        # Stage slots are process state, not part of the stored order
        view = {**view, "shipment": {**view["shipment"], "in_flight": stage_registry.in_flight(order_id)}}
    return view


@order_router.post("/{order_id}/accept", response_model=OrderStatusResponse)
async def accept_order(order_id: str, body: VersionedRequest | None = None) -> OrderStatusResponse:
    expected = body.expected_version if body else None
    return OrderStatusResponse(**await _process(AcceptOrder(order_id=order_id, expected_version=expected)))


@order_router.post("/{order_id}/advance", response_model=OrderStatusResponse)
async def advance_order(order_id: str, body: VersionedRequest | None = None) -> OrderStatusResponse:
    expected = body.expected_version if body else None
    return OrderStatusResponse(**await _process(AdvanceOrder(order_id=order_id, expected_version=expected)))


@order_router.post("/{order_id}/cancel", response_model=OrderStatusResponse)
async def cancel_order(order_id: str, body: CancelOrderRequest) -> OrderStatusResponse:
    command = CancelOrder(
        order_id=order_id,
        reason=body.reason,
        cancelled_by=body.cancelled_by,
        expected_version=body.expected_version,
    )
    return OrderStatusResponse(**await _process(command))


@order_router.post("/{order_id}/status-override", response_model=OrderStatusResponse)
async def override_order_status(order_id: str, body: OverrideStatusRequest) -> OrderStatusResponse:
    command = OverrideOrderStatus(
        order_id=order_id,
        status=body.status,
        justification=body.justification,
        actor=body.actor,
        expected_version=body.expected_version,
    )
    return OrderStatusResponse(**await _process(command))


@order_router.post("/{order_id}/payment/verify", response_model=WebhookAckResponse)
async def verify_payment(order_id: str, body: VerifyPaymentRequest) -> WebhookAckResponse:
    """Checkout callback: the client returns the gateway's signed payment ids."""
    order = _load(order_id)
    if order.payment.gateway_order_id != body.gateway_order_id:
        raise HTTPException(status_code=400, detail="Gateway order does not belong to this order")
    result = await _process(
        RecordGatewayPayment(
            event_id=f"checkout:{body.gateway_payment_id}",
            gateway_order_id=body.gateway_order_id,
            gateway_payment_id=body.gateway_payment_id,
            signature=body.signature,
        )
    )
    return WebhookAckResponse(**result)


@order_router.post("/{order_id}/cod-collection", response_model=PaymentStatusResponse)
async def confirm_cod_collection(order_id: str) -> PaymentStatusResponse:
    return PaymentStatusResponse(**await _process(ConfirmCodCollection(order_id=order_id)))


# ---------------------------------------------------------------------------
# Shipment stages
# ---------------------------------------------------------------------------
@order_router.get("/{order_id}/shipment")
async def get_shipment(order_id: str) -> dict:
    return shipment_view(_load(order_id))


@order_router.post("/{order_id}/shipment/{stage}")
async def run_shipment_stage(
    order_id: str,
    stage: str,
    background_tasks: BackgroundTasks,
    body: AssignAwbRequest | None = None,
    wait: bool = False,
):
    """Run a carrier stage.

    By default the stage is acknowledged with 202 and completed in the
    background; the outcome is announced on the event bus and visible through
    ``GET /orders/{id}/shipment``. A stage that already ran answers 200 with
    its stored result. ``?wait=true`` runs the stage inline.
    """
    params = {"courier_id": body.courier_id} if stage == "assign-awb" and body and body.courier_id else {}
    if wait:
        return await run_in_threadpool(run_stage, stage, order_id, **params)

    existing = start_stage(stage, order_id)
    if existing is not None:
        return existing
    background_tasks.add_task(complete_stage, stage, order_id, params)
    return JSONResponse(
        status_code=202,
        content={"stage": stage, "order_id": order_id, "status": "in_progress"},
    )


# ---------------------------------------------------------------------------
# Shipping cost
# ---------------------------------------------------------------------------
@order_router.post("/{order_id}/package/uploads", response_model=PackageUploadResponse)
async def request_package_upload(order_id: str, body: PackageUploadRequest) -> PackageUploadResponse:
    command = RequestPackageImageUpload(
        order_id=order_id,
        filename=body.filename,
        content_type=body.content_type,
        size=body.size,
    )
    return PackageUploadResponse(**await _process(command))


@order_router.put("/{order_id}/package")
async def save_package(order_id: str, body: SavePackageRequest) -> dict:
    command = SavePackage(
        order_id=order_id,
        length_cm=body.length_cm,
        breadth_cm=body.breadth_cm,
        height_cm=body.height_cm,
        weight_kg=body.weight_kg,
        notes=body.notes,
        images=json.dumps(body.images),
    )
    return await _process(command)


@order_router.post("/{order_id}/shipping-payment-link", status_code=201)
async def create_shipping_payment_link(order_id: str, body: CreatePaymentLinkRequest) -> dict:
    return await run_in_threadpool(send_shipping_payment_link, order_id, body.amount, body.currency, body.description)


@order_router.post("/{order_id}/shipping-payment-link/close")
async def close_shipping_payment_link(order_id: str, body: ClosePaymentLinkRequest) -> dict:
    return await _process(CloseShippingPaymentLink(order_id=order_id, status=body.status))


# ---------------------------------------------------------------------------
# GST
# ---------------------------------------------------------------------------
@order_router.put("/{order_id}/gst")
async def record_gst_details(order_id: str, body: GstDetailsRequest) -> dict:
    return await _process(RecordGstDetails(order_id=order_id, **body.model_dump()))


@order_router.post("/{order_id}/gst/invoice")
async def attach_gst_invoice(order_id: str, body: GstInvoiceRequest) -> dict:
    command = AttachGstInvoice(
        order_id=order_id,
        invoice_url=body.invoice_url,
        invoice_number=body.invoice_number,
    )
    return await _process(command)


@order_router.get("/{order_id}/invoice", response_model=InvoiceResponse)
async def get_invoice(order_id: str) -> InvoiceResponse:
    url, source = _load(order_id).invoice()
    return InvoiceResponse(order_id=order_id, url=url, source=source)


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_LINK_PAYMENT_EVENTS = ("payment_link.paid", "payment_link.partially_paid")
_LINK_CLOSED_EVENTS = {"payment_link.expired": "expired", "payment_link.cancelled": "cancelled"}


def gateway_webhook_command(event: dict, event_id: str | None = None):
    """Translate a gateway webhook body into an ordering command, or None to ignore it."""
    event_type = event.get("event") or ""
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    link = (payload.get("payment_link") or {}).get("entity") or {}
    event_id = event_id or event.get("id") or f"{event_type}:{payment.get('id') or link.get('id')}"

    if event_type in _LINK_PAYMENT_EVENTS and link.get("id") and payment.get("id"):
        return ApplyShippingPayment(
            event_id=event_id,
            link_id=link["id"],
            payment_id=payment["id"],
            amount=int(payment.get("amount") or 0),
        )

    if event_type in _LINK_CLOSED_EVENTS and link.get("id"):
        match = current_domain.repository_for(Order).find_by_shipping_link_id(link["id"])
        if match is None:
            return None
        return CloseShippingPaymentLink(order_id=match.id, status=_LINK_CLOSED_EVENTS[event_type])

    notes = payment.get("notes") or {}
    if isinstance(notes, dict) and notes.get("purpose") == "shipping_payment":
        # Settled through the payment_link.* events
        return None

    if event_type == "payment.captured" and payment.get("order_id") and payment.get("id"):
        return RecordGatewayPayment(
            event_id=event_id,
            gateway_order_id=payment["order_id"],
            gateway_payment_id=payment["id"],
        )

    if event_type == "payment.failed" and payment.get("order_id"):
        return RecordGatewayPaymentFailure(
            event_id=event_id,
            gateway_order_id=payment["order_id"],
            reason=payment.get("error_description") or payment.get("error_reason"),
        )

    return None


@webhook_router.post("/gateway", response_model=WebhookAckResponse)
async def gateway_webhook(
    request: Request,
    x_razorpay_signature: str = Header(default=""),
    x_razorpay_event_id: str = Header(default=""),
) -> WebhookAckResponse:
    """Payment gateway callback. Replays are acknowledged as ``duplicate``."""
    raw = (await request.body()).decode("utf-8")
    if not get_gateway().verify_webhook_signature(raw, x_razorpay_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        event = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from None

    command = gateway_webhook_command(event, x_razorpay_event_id or None)
    if command is None:
        return WebhookAckResponse(status="ignored")

    try:
        result = await _process(command)
    except (ConflictError, ObjectNotFoundError) as exc:
        logger.warning("Gateway webhook ignored", webhook_event=event.get("event"), error=str(exc))
        return WebhookAckResponse(status="ignored")
    return WebhookAckResponse(status=result.get("status", "processed"), order_id=result.get("order_id"))


@webhook_router.post("/carrier", response_model=WebhookAckResponse)
async def carrier_webhook(
    request: Request,
    body: TrackingWebhookRequest,
    x_api_key: str = Header(default=""),
) -> WebhookAckResponse:
    """Carrier tracking callback, routed by order id or AWB."""
    raw = (await request.body()).decode("utf-8")
    if not get_carrier().verify_webhook_signature(raw, x_api_key):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    event_id = body.event_id or ":".join(
        part or "" for part in (body.awb_code or body.order_id, body.current_status, body.current_timestamp)
    )
    command = RecordTrackingUpdate(
        event_id=event_id,
        order_id=body.order_id,
        awb_code=body.awb_code,
        courier_name=body.courier_name,
        current_status=body.current_status,
        tracking_url=body.tracking_url,
        estimated_delivery=body.estimated_delivery,
    )
    result = await _process(command)
    return WebhookAckResponse(**result)
