"""Carrier adapter abstraction — pluggable shipping carrier integration."""

import os

_carrier_instance = None


def get_carrier():
    """Return the configured carrier adapter (singleton).

    Uses FakeCarrier by default. In production, set CARRIER_ADAPTER=shiprocket
    together with SHIPROCKET_EMAIL, SHIPROCKET_PASSWORD and, for tracking
    webhooks, SHIPROCKET_WEBHOOK_TOKEN.
    """
    global _carrier_instance
    if _carrier_instance is None:
        adapter = os.environ.get("CARRIER_ADAPTER", "fake")
        if adapter == "fake":
            from ordering.carrier.fake_adapter import FakeCarrier

            _carrier_instance = FakeCarrier()
        elif adapter == "shiprocket":
            from ordering.carrier.shiprocket_adapter import ShiprocketCarrier

            _carrier_instance = ShiprocketCarrier(
                email=os.environ["SHIPROCKET_EMAIL"],
                password=os.environ["SHIPROCKET_PASSWORD"],
                webhook_token=os.environ.get("SHIPROCKET_WEBHOOK_TOKEN", ""),
            )
        else:
            raise ValueError(f"Unknown carrier adapter: {adapter}")
    return _carrier_instance


def set_carrier(carrier) -> None:
    """Override the active carrier adapter (useful for tests)."""
    global _carrier_instance
    _carrier_instance = carrier


def reset_carrier():
    """Reset the carrier singleton (useful for testing)."""
    global _carrier_instance
    _carrier_instance = None
