"""Shiprocket carrier adapter.

Talks to the Shiprocket external API over httpx. A bearer token is obtained
from the login endpoint and cached for nine days (Shiprocket tokens live for
ten). A 401 drops the cached token and logs in again once.

Only connection failures are retried, at most ``max_attempts`` times with
exponential backoff: the request never reached the carrier, so repeating it
cannot create a second shipment. Read timeouts and 5xx answers surface as
CarrierUnavailable for the caller to retry later.
"""

import hmac
import time
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from ordering.carrier.port import (
    AwbAssignment,
    CarrierDuplicate,
    CarrierPort,
    CarrierRejected,
    CarrierShipment,
    CarrierUnavailable,
    PickupRequest,
)

logger = structlog.get_logger(__name__)

SHIPROCKET_API_BASE = "https://apiv2.shiprocket.in"
TOKEN_TTL = timedelta(days=9)

_DUPLICATE_MARKERS = ("already exist", "already assigned", "already in pickup queue", "already generated")


def _is_duplicate(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _DUPLICATE_MARKERS)


class ShiprocketCarrier(CarrierPort):
    """Production Shiprocket adapter."""

    def __init__(
        self,
        email: str,
        password: str,
        webhook_token: str = "",
        base_url: str = SHIPROCKET_API_BASE,
        timeout: float = 20.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        self.email = email
        self.password = password
        self.webhook_token = webhook_token
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._token: str | None = None
        self._token_expires_at: datetime | None = None
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=10.0, pool=30.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------
    def _auth_token(self) -> str:
        now = datetime.now(UTC)
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token

        response = self._send("POST", "/v1/external/auth/login", json={"email": self.email, "password": self.password})
        if response.status_code >= 400:
            raise CarrierUnavailable(f"Shiprocket login failed with HTTP {response.status_code}")
        token = response.json().get("token")
        if not token:
            raise CarrierUnavailable("Shiprocket login returned no token")

        self._token = token
        self._token_expires_at = now + TOKEN_TTL
        logger.info("Shiprocket token refreshed", expires_at=self._token_expires_at.isoformat())
        return token

    def _invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = None

    # -------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------
    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._client.request(method, path, **kwargs)
            except httpx.ConnectError as exc:
                if attempt == self.max_attempts:
                    raise CarrierUnavailable(f"Shiprocket unreachable: {exc}") from exc
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning("Shiprocket connection failed, retrying", path=path, attempt=attempt, delay=delay)
                time.sleep(delay)
            except httpx.TimeoutException as exc:
                logger.warning("Shiprocket request timed out", path=path)
                raise CarrierUnavailable(f"Shiprocket timed out: {exc}") from exc
            except httpx.TransportError as exc:
                raise CarrierUnavailable(f"Shiprocket transport error: {exc}") from exc
        raise CarrierUnavailable("Shiprocket unreachable")

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self._send(method, path, headers={"Authorization": f"Bearer {self._auth_token()}"}, **kwargs)
        if response.status_code == 401:
            self._invalidate_token()
            response = self._send(method, path, headers={"Authorization": f"Bearer {self._auth_token()}"}, **kwargs)

        if response.status_code >= 500:
            raise CarrierUnavailable(f"Shiprocket answered HTTP {response.status_code}")
        if response.status_code >= 400:
            message, errors = self._error_detail(response)
            if _is_duplicate(message):
                raise CarrierDuplicate(message, errors)
            raise CarrierRejected(message, errors)
        return response.json() if response.content else {}

    @staticmethod
    def _error_detail(response: httpx.Response) -> tuple[str, dict]:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text}", {}
        message = body.get("message") or f"HTTP {response.status_code}"
        errors = body.get("errors") or {}
        if not isinstance(errors, dict):
            errors = {"carrier": [str(errors)]}
        errors = {key: value if isinstance(value, list) else [str(value)] for key, value in errors.items()}
        return str(message), errors

    # -------------------------------------------------------------------
    # Port
    # -------------------------------------------------------------------
    def create_order(self, payload: dict) -> CarrierShipment:
        body = self._request("POST", "/v1/external/orders/create/adhoc", json=payload)
        shipment_id = body.get("shipment_id")
        if not shipment_id:
            message = body.get("message") or "Shiprocket returned no shipment id"
            if _is_duplicate(message):
                raise CarrierDuplicate(message)
            raise CarrierRejected(message)
        return CarrierShipment(shipment_id=str(shipment_id), carrier_order_id=str(body.get("order_id") or ""))

    def find_shipment(self, order_reference: str) -> CarrierShipment | None:
        body = self._request("GET", "/v1/external/orders", params={"search": order_reference})
        for order in body.get("data") or []:
            if str(order.get("channel_order_id")) != str(order_reference):
                continue
            shipments = order.get("shipments") or []
            if shipments:
                return CarrierShipment(shipment_id=str(shipments[0]["id"]), carrier_order_id=str(order.get("id")))
        return None

    def assign_awb(self, shipment_id: str, courier_id: str | None = None) -> AwbAssignment:
        payload = {"shipment_id": shipment_id}
        if courier_id:
            payload["courier_id"] = courier_id
        body = self._request("POST", "/v1/external/courier/assign/awb", json=payload)

        if not body.get("awb_assign_status"):
            message = ((body.get("response") or {}).get("data") or {}).get("awb_assign_error") or body.get(
                "message", "AWB assignment failed"
            )
            if _is_duplicate(message):
                raise CarrierDuplicate(message)
            raise CarrierRejected(message, {"awb_code": [message]})

        data = body["response"]["data"]
        return AwbAssignment(
            awb_code=data["awb_code"],
            courier_name=data.get("courier_name"),
            courier_id=str(data.get("courier_company_id") or courier_id or ""),
        )

    def get_awb(self, shipment_id: str) -> AwbAssignment | None:
        body = self._request("GET", f"/v1/external/shipments/{shipment_id}")
        data = body.get("data") or {}
        if not data.get("awb"):
            return None
        return AwbAssignment(awb_code=data["awb"], courier_name=data.get("courier"), courier_id=None)

    def generate_pickup(self, shipment_id: str) -> PickupRequest:
        try:
            body = self._request("POST", "/v1/external/courier/generate/pickup", json={"shipment_id": [shipment_id]})
        except CarrierDuplicate as exc:
            logger.info("Pickup already requested with carrier", shipment_id=shipment_id, message=exc.message)
            return PickupRequest(details={"message": exc.message})

        response = body.get("response") or {}
        return PickupRequest(scheduled_for=response.get("pickup_scheduled_date"), details=response)

    def generate_label(self, shipment_id: str) -> str:
        body = self._request("POST", "/v1/external/courier/generate/label", json={"shipment_id": [shipment_id]})
        if not body.get("label_url"):
            raise CarrierRejected(body.get("response") or "Label could not be generated", {"label": ["not generated"]})
        return body["label_url"]

    def generate_invoice(self, carrier_order_id: str) -> str:
        body = self._request("POST", "/v1/external/orders/print/invoice", json={"ids": [carrier_order_id]})
        if not body.get("invoice_url"):
            raise CarrierRejected("Invoice could not be generated", {"invoice": ["not generated"]})
        return body["invoice_url"]

    def generate_manifest(self, shipment_id: str, carrier_order_id: str | None = None) -> str:
        try:
            body = self._request("POST", "/v1/external/manifests/generate", json={"shipment_id": [shipment_id]})
            if body.get("manifest_url"):
                return body["manifest_url"]
        except CarrierDuplicate:
            logger.info("Manifest already generated, printing existing one", shipment_id=shipment_id)

        if not carrier_order_id:
            raise CarrierRejected("Manifest could not be generated", {"manifest": ["not generated"]})
        body = self._request("POST", "/v1/external/manifests/print", json={"order_ids": [carrier_order_id]})
        if not body.get("manifest_url"):
            raise CarrierRejected("Manifest could not be printed", {"manifest": ["not generated"]})
        return body["manifest_url"]

    def verify_webhook_signature(self, _payload: str, signature: str) -> bool:
        # Shiprocket echoes the configured token in the x-api-key header
        if not self.webhook_token:
            return False
        return hmac.compare_digest(self.webhook_token, signature or "")
