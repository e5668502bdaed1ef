"""Payment gateway factory.

Provides get_gateway() / set_gateway() / reset_gateway() to swap
implementations:
- FakeGateway for development and testing (GATEWAY_ADAPTER=fake, default)
- RazorpayGateway for production (GATEWAY_ADAPTER=razorpay, with
  RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET and RAZORPAY_WEBHOOK_SECRET)
"""

import os

from ordering.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to FakeGateway."""
    global _current_gateway
    if _current_gateway is None:
        adapter = os.environ.get("GATEWAY_ADAPTER", "fake")
        if adapter == "fake":
            from ordering.gateway.fake_adapter import FakeGateway

            _current_gateway = FakeGateway()
        elif adapter == "razorpay":
            from ordering.gateway.razorpay_adapter import RazorpayGateway

            _current_gateway = RazorpayGateway(
                key_id=os.environ["RAZORPAY_KEY_ID"],
                key_secret=os.environ["RAZORPAY_KEY_SECRET"],
                webhook_secret=os.environ.get("RAZORPAY_WEBHOOK_SECRET", ""),
            )
        else:
            raise ValueError(f"Unknown gateway adapter: {adapter}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
