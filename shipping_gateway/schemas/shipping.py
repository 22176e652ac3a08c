"""
Shipping configuration schemas

Pydantic models the declarative configuration tree is bound to. Keys in the
tree are hyphenated ("carrier-type", "tracking-url"); snake_case is accepted
too.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipping_gateway.models.carrier import CarrierType, PackageType, PriceCategory
from shipping_gateway.models.shipment import DistanceUnit, WeightUnit


def _hyphenate(name: str) -> str:
    return name.replace("_", "-")


class ConfigSection(BaseModel):
    model_config = ConfigDict(
        alias_generator=_hyphenate,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )


def _upper_enum(v):
    return v.upper() if isinstance(v, str) else v


def _ensure_unique_names(items: List[Any], kind: str) -> List[Any]:
    seen = set()
    for item in items:
        key = item.name.lower()
        if key in seen:
            raise ValueError(f"Duplicate {kind} name: {item.name}")
        seen.add(key)
    return items


# ==================== Catalog Sections ====================


class ServiceConfig(ConfigSection):
    """carrier > services > service"""
    name: str = Field(..., min_length=1)
    nls_name: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    price_category: PriceCategory = PriceCategory.UNKNOWN
    include_business_days: bool = False
    include_saturdays: bool = False
    include_sundays: bool = False
    trackable: bool = False
    insurance: bool = False

    @field_validator("price_category", mode="before")
    @classmethod
    def upper_price_category(cls, v):
        return _upper_enum(v)


class PackageConfig(ConfigSection):
    """carrier > packages > package"""
    name: str = Field(..., min_length=1)
    nls_name: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    package_type: PackageType = PackageType.UNKNOWN
    distance_unit: DistanceUnit = DistanceUnit.IN
    length: Decimal = Decimal("0")
    width: Decimal = Decimal("0")
    height: Decimal = Decimal("0")
    weight_unit: WeightUnit = WeightUnit.LB
    weight: Decimal = Decimal("0")

    @field_validator("package_type", "distance_unit", "weight_unit", mode="before")
    @classmethod
    def upper_enums(cls, v):
        return _upper_enum(v)


class CarrierConfig(ConfigSection):
    """carriers > carrier"""
    carrier_type: CarrierType = CarrierType.UNKNOWN
    name: str = Field(..., min_length=1)
    nls_name: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    tracking_url: Optional[str] = None
    services: List[ServiceConfig] = Field(default_factory=list)
    packages: List[PackageConfig] = Field(default_factory=list)

    @field_validator("carrier_type", mode="before")
    @classmethod
    def upper_carrier_type(cls, v):
        return _upper_enum(v)

    @field_validator("services")
    @classmethod
    def unique_services(cls, v):
        return _ensure_unique_names(v, "service")

    @field_validator("packages")
    @classmethod
    def unique_packages(cls, v):
        return _ensure_unique_names(v, "package")


# ==================== System Section ====================


class ShippingSystemConfig(ConfigSection):
    """shipping-processing > shipping-system"""
    name: Optional[str] = None
    type: Optional[str] = None
    instrumentation_enabled: bool = False
    web_service_call_timeout_ms: Optional[int] = None
    keep_alive: bool = True
    default_session_connect_params: Optional[Dict[str, Any]] = None
    carriers: List[CarrierConfig] = Field(default_factory=list)

    @field_validator("carriers")
    @classmethod
    def unique_carriers(cls, v):
        return _ensure_unique_names(v, "carrier")
