"""Carrier port — abstract interface for shipping carrier integrations.

All carrier adapters must implement this interface. The domain code
programs against the port; adapters are swapped via configuration.

Failures are raised, not returned:
    CarrierUnavailable  timeout, transport failure or 5xx. Nothing changed
                        on our side; the stage can be retried.
    CarrierRejected     4xx with field detail. The input must be fixed.
    CarrierDuplicate    the carrier already holds the resource. Callers
                        fetch the existing identifiers instead.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class CarrierError(Exception):
    """Base class for carrier failures."""

    def __init__(self, message: str, errors: dict | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}


class CarrierUnavailable(CarrierError):
    """Timeout, transport failure or 5xx answer."""


class CarrierRejected(CarrierError):
    """The carrier refused the request."""


class CarrierDuplicate(CarrierError):
    """The carrier reports the resource already exists."""


@dataclass(frozen=True)
class CarrierShipment:
    shipment_id: str
    carrier_order_id: str | None = None


@dataclass(frozen=True)
class AwbAssignment:
    awb_code: str
    courier_name: str | None = None
    courier_id: str | None = None


@dataclass(frozen=True)
class PickupRequest:
    scheduled_for: str | None = None
    details: dict = field(default_factory=dict)


class CarrierPort(ABC):
    """Abstract interface for carrier adapters."""

    @abstractmethod
    def create_order(self, payload: dict) -> CarrierShipment:
        """Create a carrier order/shipment from a mapped payload."""
        ...

    @abstractmethod
    def find_shipment(self, order_reference: str) -> CarrierShipment | None:
        """Look up an existing shipment by our order reference."""
        ...

    @abstractmethod
    def assign_awb(self, shipment_id: str, courier_id: str | None = None) -> AwbAssignment:
        """Assign an airway bill (and courier) to a shipment."""
        ...

    @abstractmethod
    def get_awb(self, shipment_id: str) -> AwbAssignment | None:
        """Return the AWB already assigned to a shipment, if any."""
        ...

    @abstractmethod
    def generate_pickup(self, shipment_id: str) -> PickupRequest:
        """Request a courier pickup for the shipment."""
        ...

    @abstractmethod
    def generate_label(self, shipment_id: str) -> str:
        """Return the shipping label URL."""
        ...

    @abstractmethod
    def generate_invoice(self, carrier_order_id: str) -> str:
        """Return the carrier invoice URL."""
        ...

    @abstractmethod
    def generate_manifest(self, shipment_id: str, carrier_order_id: str | None = None) -> str:
        """Return the manifest URL."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook callback is authentic."""
        ...
