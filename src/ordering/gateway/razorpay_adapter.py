"""Razorpay payment gateway adapter.

Talks to the Razorpay REST API over httpx with basic auth (key id / key
secret). Checkout signatures are HMAC-SHA256 of ``order_id|payment_id`` with
the key secret; webhooks are HMAC-SHA256 of the raw body with the webhook
secret.
"""

import hashlib
import hmac

import httpx
import structlog

from ordering.gateway.port import GatewayOrder, GatewayRejected, GatewayUnavailable, PaymentGateway, PaymentLink

logger = structlog.get_logger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com"


class RazorpayGateway(PaymentGateway):
    """Production Razorpay gateway adapter."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        base_url: str = RAZORPAY_API_BASE,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------
    def _post(self, path: str, payload: dict) -> dict:
        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Razorpay request timed out", path=path)
            raise GatewayUnavailable(f"Razorpay timed out: {exc}") from exc
        except httpx.TransportError as exc:
            logger.warning("Razorpay transport error", path=path, error=str(exc))
            raise GatewayUnavailable(f"Razorpay unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayUnavailable(f"Razorpay answered HTTP {response.status_code}")
        if response.status_code >= 400:
            raise GatewayRejected(self._error_description(response))
        return response.json()

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text}"
        error = body.get("error") or {}
        return error.get("description") or f"HTTP {response.status_code}"

    @staticmethod
    def _hmac(secret: str, message: str) -> str:
        return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()

    # -------------------------------------------------------------------
    # Port
    # -------------------------------------------------------------------
    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        body = self._post(
            "/v1/orders",
            {"amount": amount, "currency": currency, "receipt": receipt, "payment_capture": 1},
        )
        return GatewayOrder(
            gateway_order_id=body["id"],
            amount=body.get("amount", amount),
            currency=body.get("currency", currency),
            receipt=body.get("receipt", receipt),
        )

    def verify_payment_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        expected = self._hmac(self.key_secret, f"{gateway_order_id}|{gateway_payment_id}")
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        if not self.webhook_secret:
            logger.warning("Razorpay webhook secret is not configured; rejecting webhook")
            return False
        return hmac.compare_digest(self._hmac(self.webhook_secret, payload), signature or "")

    def create_payment_link(
        self,
        amount: int,
        currency: str,
        description: str,
        reference_id: str,
        notes: dict | None = None,
    ) -> PaymentLink:
        body = self._post(
            "/v1/payment_links",
            {
                "amount": amount,
                "currency": currency,
                "description": description,
                "reference_id": reference_id,
                "notes": notes or {},
            },
        )
        return PaymentLink(
            link_id=body["id"],
            short_url=body.get("short_url", ""),
            amount=body.get("amount", amount),
            currency=body.get("currency", currency),
            status=body.get("status", "created"),
        )
