"""Pydantic request/response schemas for the Ordering API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands. Amounts are integer paise.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(StrictModel):
    full_name: str
    phone: str
    email: str | None = None
    line1: str
    line2: str | None = None
    landmark: str | None = None
    city: str
    state: str
    postal_code: str
    country: str = "India"


class OrderItemSchema(StrictModel):
    product_id: str
    name: str
    sku: str | None = None
    quantity: int = Field(ge=1)
    unit_price: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Order placement and lifecycle
# ---------------------------------------------------------------------------
class PlaceOrderRequest(StrictModel):
    customer_id: str
    items: list[OrderItemSchema] = Field(min_length=1)
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    payment_method: str
    subtotal: int | None = Field(default=None, ge=0)
    tax: int = Field(default=0, ge=0)
    shipping: int = Field(default=0, ge=0)
    total: int | None = Field(default=None, ge=0)
    currency: str = "INR"
    order_number: str | None = None

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "customer_id": "cust-001",
                    "items": [{"product_id": "prod-1", "name": "Brake Pad", "sku": "BP-1", "quantity": 2, "unit_price": 49900}],
                    "shipping_address": {
                        "full_name": "Asha Rao",
                        "phone": "+91 98765 43210",
                        "email": "asha@example.com",
                        "line1": "12 MG Road",
                        "city": "Bengaluru",
                        "state": "Karnataka",
                        "postal_code": "560001",
                    },
                    "payment_method": "cod",
                    "shipping": 5000,
                }
            ]
        },
    )


class PlaceOrderResponse(BaseModel):
    order_id: str
    order_number: str
    gateway_order_id: str | None = None


class VersionedRequest(StrictModel):
    expected_version: int | None = Field(default=None, ge=0)


class CancelOrderRequest(VersionedRequest):
    reason: str
    cancelled_by: str | None = None


class OverrideStatusRequest(VersionedRequest):
    status: str = Field(validation_alias=AliasChoices("status", "orderStatus"))
    justification: str
    actor: str

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "status": "delivered",
                    "justification": "Courier confirmed delivery by phone",
                    "actor": "ops@example.com",
                }
            ]
        },
    )


class OrderStatusResponse(BaseModel):
    order_id: str
    status: str
    payment_status: str | None = None
    version: int


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class VerifyPaymentRequest(StrictModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str


class PaymentStatusResponse(BaseModel):
    order_id: str
    payment_status: str


class WebhookAckResponse(BaseModel):
    status: str
    order_id: str | None = None


class TrackingWebhookRequest(BaseModel):
    """Carrier tracking callback. Unknown carrier fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    event_id: str | None = None
    order_id: str | None = None
    awb_code: str | None = Field(default=None, validation_alias=AliasChoices("awb_code", "awb"))
    courier_name: str | None = None
    current_status: str | None = None
    current_timestamp: str | None = None
    tracking_url: str | None = None
    estimated_delivery: str | None = Field(default=None, validation_alias=AliasChoices("estimated_delivery", "etd"))


# ---------------------------------------------------------------------------
# Shipment
# ---------------------------------------------------------------------------
class AssignAwbRequest(StrictModel):
    courier_id: str | None = None


# ---------------------------------------------------------------------------
# Shipping cost
# ---------------------------------------------------------------------------
class PackageUploadRequest(StrictModel):
    filename: str = "file"
    content_type: str
    size: int = Field(ge=0)


class PackageUploadResponse(BaseModel):
    upload_url: str
    public_url: str
    key: str
    expires_in: int
    headers: dict[str, str] = {}


class SavePackageRequest(StrictModel):
    length_cm: float | None = Field(default=None, ge=0)
    breadth_cm: float | None = Field(default=None, ge=0)
    height_cm: float | None = Field(default=None, ge=0)
    weight_kg: float | None = Field(default=None, ge=0)
    notes: str | None = None
    images: list[str] = []


class CreatePaymentLinkRequest(StrictModel):
    amount: int
    currency: str = "INR"
    description: str | None = None


class ClosePaymentLinkRequest(StrictModel):
    status: str


# ---------------------------------------------------------------------------
# GST
# ---------------------------------------------------------------------------
class GstDetailsRequest(StrictModel):
    want_invoice: bool = False
    gstin: str | None = None
    legal_name: str | None = None
    place_of_supply: str | None = None
    email: str | None = None
    tax_percent: float | None = Field(default=None, ge=0)
    tax_amount: int | None = Field(default=None, ge=0)


class GstInvoiceRequest(StrictModel):
    invoice_url: str
    invoice_number: str | None = None


class InvoiceResponse(BaseModel):
    order_id: str
    url: str | None = None
    source: str | None = None
