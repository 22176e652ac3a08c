"""
Shipping session

A session is a short-lived handle bound to one user/credential set of a
shipping system. Every operation checks the system's capabilities first and
only then delegates to the system, passing the session along.

Sessions register themselves with their system on construction and
deregister on close(); use them as context managers so deregistration
happens on every exit path:

    with system.start_session() as session:
        label = session.create_label(context, shipment)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Tuple, TYPE_CHECKING

from shipping_gateway.core.exceptions import (
    AddressValidationError,
    ShippingError,
    UnsupportedActionError,
)
from shipping_gateway.models.address import Address
from shipping_gateway.models.carrier import ShippingCarrier
from shipping_gateway.models.shipment import Label, Shipment, ShippingRate, TrackInfo

if TYPE_CHECKING:
    from shipping_gateway.modules.shipping.system import ShippingSystem

logger = logging.getLogger(__name__)


@dataclass
class User:
    """Authenticated principal; credentials are provider specific."""
    name: str
    credentials: Any = None


@dataclass
class ConnectionParameters:
    """Parameters a session is started with."""
    name: Optional[str] = None
    user: Optional[User] = None
    extra: dict = field(default_factory=dict)


class ShippingSession:
    """Session of a ShippingSystem; all system operations require one."""

    def __init__(self, shipping_system: "ShippingSystem", params: ConnectionParameters):
        if shipping_system is None or params is None:
            raise ShippingError(
                f"{type(self).__name__} requires a shipping system and connection parameters"
            )

        self._shipping_system = shipping_system
        self._name = params.name
        self._user = params.user
        self._closed = False

        shipping_system._register_session(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Deregister from the owning system. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._shipping_system._unregister_session(self)

    @property
    def shipping_system(self) -> "ShippingSystem":
        return self._shipping_system

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_valid(self) -> bool:
        return self._user is not None

    def _require(self, supported: bool, action: str) -> None:
        if not supported:
            logger.warning(f"{self._shipping_system.name}: '{action}' is not supported")
            raise UnsupportedActionError(action)

    def create_label(self, context: Any, shipment: Shipment) -> Label:
        """Create a shipping label."""
        self._require(self._shipping_system.capabilities.supports_label_creation, "create_label")
        return self._shipping_system.create_label(self, context, shipment)

    def track_shipment(self, context: Any, carrier_id: str, tracking_number: str) -> TrackInfo:
        """Retrieve shipment tracking info."""
        self._require(self._shipping_system.capabilities.supports_shipment_tracking, "track_shipment")
        return self._shipping_system.track_shipment(self, context, carrier_id, tracking_number)

    def get_tracking_url(self, context: Any, carrier_id: str, tracking_number: str) -> Optional[str]:
        """Retrieve the public tracking URL for a carrier and tracking number."""
        self._require(self._shipping_system.capabilities.supports_shipment_tracking, "get_tracking_url")
        return self._shipping_system.get_tracking_url(self, context, carrier_id, tracking_number)

    def validate_address(
        self, context: Any, address: Address
    ) -> Tuple[Optional[Address], Optional[AddressValidationError]]:
        """
        Validate a shipping address.

        Returns (address, None) on success, where address may carry corrected
        fields ('New Yourk' -> 'New York'), or (None, error) when rejected.
        """
        self._require(self._shipping_system.capabilities.supports_address_validation, "validate_address")
        return self._shipping_system.validate_address(self, context, address)

    def get_shipping_carriers(self, context: Any) -> Iterable[ShippingCarrier]:
        """Return all carriers configured for the system."""
        self._require(self._shipping_system.capabilities.supports_carrier_services, "get_shipping_carriers")
        return self._shipping_system.get_shipping_carriers(self, context)

    def estimate_shipping_cost(self, context: Any, shipment: Shipment) -> Optional[ShippingRate]:
        """Estimate shipping label cost."""
        self._require(
            self._shipping_system.capabilities.supports_shipping_cost_estimation,
            "estimate_shipping_cost",
        )
        return self._shipping_system.estimate_shipping_cost(self, context, shipment)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(system={self._shipping_system.name!r}, name={self._name!r})"
