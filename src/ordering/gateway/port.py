"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and RazorpayGateway
(production) without changing any domain or application code.

Amounts are integer minor units (paise). Adapters raise GatewayUnavailable
for timeouts and 5xx answers and GatewayRejected when the gateway refuses
the request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class GatewayError(Exception):
    """Base class for payment gateway failures."""


class GatewayUnavailable(GatewayError):
    """Timeout, transport failure or 5xx answer. Safe to retry."""


class GatewayRejected(GatewayError):
    """The gateway refused the request (4xx)."""


@dataclass(frozen=True)
class GatewayOrder:
    """An order registered with the gateway for a prepaid checkout."""

    gateway_order_id: str
    amount: int
    currency: str
    receipt: str | None = None


@dataclass(frozen=True)
class PaymentLink:
    """A hosted payment link issued by the gateway."""

    link_id: str
    short_url: str
    amount: int
    currency: str
    status: str = "created"


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        """Register a prepaid order with the gateway."""
        ...

    @abstractmethod
    def verify_payment_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Verify the checkout signature returned to the client."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

    @abstractmethod
    def create_payment_link(
        self,
        amount: int,
        currency: str,
        description: str,
        reference_id: str,
        notes: dict | None = None,
    ) -> PaymentLink:
        """Create a hosted payment link for an ad-hoc amount."""
        ...
