"""Configurable fake payment gateway for development and testing.

This adapter simulates a real payment gateway without any external calls.
Checkout signatures are real HMAC-SHA256 digests over a test secret, so
``sign()`` produces exactly what ``verify_payment_signature`` accepts.
"""

import hashlib
import hmac
from uuid import uuid4

from ordering.gateway.port import GatewayOrder, GatewayRejected, GatewayUnavailable, PaymentGateway, PaymentLink

FAKE_KEY_SECRET = "fake_key_secret"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.retriable: bool = True
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable", retriable: bool = True) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.retriable = retriable

    @staticmethod
    def sign(gateway_order_id: str, gateway_payment_id: str) -> str:
        """Produce the checkout signature the fake gateway will accept."""
        message = f"{gateway_order_id}|{gateway_payment_id}".encode()
        return hmac.new(FAKE_KEY_SECRET.encode(), message, hashlib.sha256).hexdigest()

    def _fail(self) -> None:
        if self.retriable:
            raise GatewayUnavailable(self.failure_reason)
        raise GatewayRejected(self.failure_reason)

    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        self.calls.append({"method": "create_order", "amount": amount, "currency": currency, "receipt": receipt})
        if not self.should_succeed:
            self._fail()
        return GatewayOrder(
            gateway_order_id=f"order_{uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
        )

    def verify_payment_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.sign(gateway_order_id, gateway_payment_id), signature or "")

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"

    def create_payment_link(
        self,
        amount: int,
        currency: str,
        description: str,
        reference_id: str,
        notes: dict | None = None,
    ) -> PaymentLink:
        self.calls.append(
            {
                "method": "create_payment_link",
                "amount": amount,
                "currency": currency,
                "description": description,
                "reference_id": reference_id,
                "notes": notes or {},
            }
        )
        if not self.should_succeed:
            self._fail()
        link_id = f"plink_{uuid4().hex[:14]}"
        return PaymentLink(
            link_id=link_id,
            short_url=f"https://rzp.example.com/{link_id[-8:]}",
            amount=amount,
            currency=currency,
        )
