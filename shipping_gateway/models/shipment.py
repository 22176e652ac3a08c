"""
Shipment value types: the request (Shipment) and what comes back from a
shipping system (Label, TrackInfo, ShippingRate).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from shipping_gateway.models.address import Address

if TYPE_CHECKING:
    from shipping_gateway.models.carrier import CarrierType, ShippingCarrier


class TrackStatus(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    DELIVERED = "DELIVERED"
    TRANSIT = "TRANSIT"
    FAILURE = "FAILURE"
    RETURNED = "RETURNED"


class LabelFormat(str, enum.Enum):
    PDF = "PDF"
    PDF_4X6 = "PDF_4X6"
    PNG = "PNG"
    ZPLII = "ZPLII"


class DistanceUnit(str, enum.Enum):
    CM = "CM"
    IN = "IN"
    FT = "FT"
    MM = "MM"
    M = "M"
    YD = "YD"


class WeightUnit(str, enum.Enum):
    G = "G"
    OZ = "OZ"
    LB = "LB"
    KG = "KG"


@dataclass(frozen=True)
class Amount:
    """Money amount in a given currency."""
    currency_iso: str
    value: Decimal

    @classmethod
    def zero(cls) -> "Amount":
        return cls("", Decimal("0"))

    def same_currency(self, other: "Amount") -> bool:
        return (self.currency_iso or "").upper() == (other.currency_iso or "").upper()

    def __str__(self) -> str:
        return f"{self.value} {self.currency_iso}".strip()


@dataclass
class Shipment:
    """
    One shipping request.

    A non-blank label_id_for_return makes this a return shipment: the
    separate return address is not sent for it.
    """
    carrier: "ShippingCarrier"
    service: "ShippingCarrier.Service"
    package: Optional["ShippingCarrier.Package"] = None

    distance_unit: DistanceUnit = DistanceUnit.IN
    length: Decimal = Decimal("0")
    width: Decimal = Decimal("0")
    height: Decimal = Decimal("0")

    weight_unit: WeightUnit = WeightUnit.LB
    weight: Decimal = Decimal("0")

    label_format: LabelFormat = LabelFormat.PDF
    label_id_for_return: Optional[str] = None

    from_address: Optional[Address] = None
    to_address: Optional[Address] = None
    return_address: Optional[Address] = None

    @property
    def is_return(self) -> bool:
        return bool(self.label_id_for_return and self.label_id_for_return.strip())


@dataclass
class Label:
    """Purchased shipping label."""
    id: str
    url: str
    format: LabelFormat
    tracking_number: str
    carrier_type: "CarrierType"
    cost: Amount = field(default_factory=Amount.zero)


@dataclass
class HistoryItem:
    """Tracking history entry; every field may be missing."""
    date: Optional[datetime] = None
    status: TrackStatus = TrackStatus.UNKNOWN
    details: Optional[str] = None
    current_location: Optional[Address] = None


@dataclass
class TrackInfo:
    """Tracking state of a shipment with its history in provider order."""
    carrier_id: Optional[str] = None
    service_id: Optional[str] = None
    tracking_url: Optional[str] = None
    tracking_number: Optional[str] = None
    date: Optional[datetime] = None
    status: TrackStatus = TrackStatus.UNKNOWN
    details: Optional[str] = None
    from_address: Optional[Address] = None
    to_address: Optional[Address] = None
    current_location: Optional[Address] = None
    history: List[HistoryItem] = field(default_factory=list)


@dataclass
class ShippingRate:
    """
    Quoted cost for a carrier/service/package.

    is_alternative is set when the requested carrier/service had no quote and
    the cheapest quote across all carriers is returned instead.
    """
    carrier_id: Optional[str] = None
    service_id: Optional[str] = None
    package_id: Optional[str] = None
    is_alternative: bool = False
    cost: Optional[Amount] = None
