"""
Carrier catalog model

A shipping system owns a catalog of carriers (USPS, FedEx, ...). Each carrier
owns its services (price tiers such as "Ground") and packages (packaging
templates). The catalog is built once from configuration and is read-only
afterwards, so it can be read from any thread without locking.
"""
from __future__ import annotations

import enum
import logging
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Generic, Iterator, Mapping, Optional, TypeVar, TYPE_CHECKING

from shipping_gateway.core.exceptions import ShippingConfigError, ShippingError
from shipping_gateway.models.shipment import DistanceUnit, WeightUnit

if TYPE_CHECKING:
    from shipping_gateway.modules.shipping.system import ShippingSystem
    from shipping_gateway.schemas.shipping import CarrierConfig, PackageConfig, ServiceConfig

logger = logging.getLogger(__name__)


class CarrierType(str, enum.Enum):
    """Carriers known to shipping systems."""
    UNKNOWN = "UNKNOWN"
    USPS = "USPS"
    DHL_EXPRESS = "DHL_EXPRESS"
    FEDEX = "FEDEX"
    UPS = "UPS"


class PriceCategory(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    SAVER = "SAVER"
    STANDARD = "STANDARD"
    EXPEDITED = "EXPEDITED"


class PackageType(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    ENVELOPE = "ENVELOPE"
    PAK = "PAK"
    BOX = "BOX"
    TUBE = "TUBE"
    CUSTOM = "CUSTOM"


T = TypeVar("T")


class NamedRegistry(Generic[T]):
    """
    Name-keyed registry with case-insensitive lookup.

    Keeps registration order. Once frozen, register() raises.
    """

    def __init__(self, kind: str):
        self._kind = kind
        self._items: Dict[str, T] = {}
        self._frozen = False

    def register(self, item: T) -> None:
        if self._frozen:
            raise ShippingError(f"{self._kind} registry is read-only")
        key = item.name.lower()
        if key in self._items:
            raise ShippingConfigError(
                f"Duplicate {self._kind} name: {item.name}",
                details={"kind": self._kind, "name": item.name},
            )
        self._items[key] = item

    def freeze(self) -> None:
        self._frozen = True

    def find(self, name: Optional[str]) -> Optional[T]:
        if not name:
            return None
        return self._items.get(name.strip().lower())

    def __getitem__(self, name: str) -> T:
        item = self.find(name)
        if item is None:
            raise KeyError(name)
        return item

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"NamedRegistry({self._kind}, {[getattr(i, 'name', i) for i in self]})"


def _nls_name(nls: Mapping[str, Mapping[str, str]], lang: Optional[str], fallback: str) -> str:
    if lang:
        entry = nls.get(lang.lower()) or nls.get(lang)
        if entry and entry.get("n"):
            return entry["n"]
    return fallback


class ShippingCarrier:
    """Shipping carrier within the scope of one ShippingSystem."""

    class Service:
        """Carrier price tier, e.g. USPS First Class or FedEx Ground."""

        def __init__(self, carrier: "ShippingCarrier", config: "ServiceConfig"):
            if carrier is None:
                raise ShippingError("Service requires an owning carrier")

            self.carrier = carrier
            self.name = config.name
            self.nls_name: Mapping[str, Mapping[str, str]] = MappingProxyType(dict(config.nls_name))
            self.price_category = config.price_category
            self.include_business_days = config.include_business_days
            self.include_saturdays = config.include_saturdays
            self.include_sundays = config.include_sundays
            self.trackable = config.trackable
            self.insurance = config.insurance

        def get_nls_name(self, lang: Optional[str] = None) -> str:
            return _nls_name(self.nls_name, lang, self.name)

        def __repr__(self) -> str:
            return f"Service({self.carrier.name}/{self.name})"

    class Package:
        """Packaging template, e.g. a flat rate box."""

        def __init__(self, carrier: "ShippingCarrier", config: "PackageConfig"):
            if carrier is None:
                raise ShippingError("Package requires an owning carrier")

            self.carrier = carrier
            self.name = config.name
            self.nls_name: Mapping[str, Mapping[str, str]] = MappingProxyType(dict(config.nls_name))
            self.package_type = config.package_type
            self.distance_unit: DistanceUnit = config.distance_unit
            self.length: Decimal = config.length
            self.width: Decimal = config.width
            self.height: Decimal = config.height
            self.weight_unit: WeightUnit = config.weight_unit
            self.weight: Decimal = config.weight

        def get_nls_name(self, lang: Optional[str] = None) -> str:
            return _nls_name(self.nls_name, lang, self.name)

        def __repr__(self) -> str:
            return f"Package({self.carrier.name}/{self.name})"

    def __init__(self, shipping_system: "ShippingSystem", config: "CarrierConfig", logo: Optional[bytes] = None):
        if shipping_system is None:
            raise ShippingError("Carrier requires an owning shipping system")

        self.shipping_system = shipping_system
        self.type: CarrierType = config.carrier_type
        self.name = config.name
        self.nls_name: Mapping[str, Mapping[str, str]] = MappingProxyType(dict(config.nls_name))
        self.tracking_url = config.tracking_url
        self.logo = logo

        self._services: NamedRegistry[ShippingCarrier.Service] = NamedRegistry("service")
        for service_cfg in config.services:
            self._services.register(ShippingCarrier.Service(self, service_cfg))
        self._services.freeze()

        self._packages: NamedRegistry[ShippingCarrier.Package] = NamedRegistry("package")
        for package_cfg in config.packages:
            self._packages.register(ShippingCarrier.Package(self, package_cfg))
        self._packages.freeze()

        logger.debug(
            f"Configured carrier {self.name} ({self.type.value}): "
            f"{len(self._services)} services, {len(self._packages)} packages"
        )

    @property
    def services(self) -> NamedRegistry["ShippingCarrier.Service"]:
        return self._services

    @property
    def packages(self) -> NamedRegistry["ShippingCarrier.Package"]:
        return self._packages

    def get_nls_name(self, lang: Optional[str] = None) -> str:
        return _nls_name(self.nls_name, lang, self.name)

    def format_tracking_url(self, tracking_number: Optional[str]) -> Optional[str]:
        """Fill the carrier's tracking-URL template ('{0}' placeholder) with a number."""
        if not self.tracking_url or not self.tracking_url.strip():
            return None
        if not tracking_number or not tracking_number.strip():
            return None
        return self.tracking_url.replace("{0}", tracking_number)

    def __repr__(self) -> str:
        return f"ShippingCarrier({self.name}, {self.type.value})"
