"""
Shipping value types and carrier catalog model.
"""
from shipping_gateway.models.address import (
    Address,
    normalize_country2,
    normalize_country3,
    postal_main_part,
)
from shipping_gateway.models.shipment import (
    Amount,
    DistanceUnit,
    HistoryItem,
    Label,
    LabelFormat,
    Shipment,
    ShippingRate,
    TrackInfo,
    TrackStatus,
    WeightUnit,
)
from shipping_gateway.models.carrier import (
    CarrierType,
    NamedRegistry,
    PackageType,
    PriceCategory,
    ShippingCarrier,
)

__all__ = [
    "Address",
    "Amount",
    "CarrierType",
    "DistanceUnit",
    "HistoryItem",
    "Label",
    "LabelFormat",
    "NamedRegistry",
    "PackageType",
    "PriceCategory",
    "Shipment",
    "ShippingCarrier",
    "ShippingRate",
    "TrackInfo",
    "TrackStatus",
    "WeightUnit",
    "normalize_country2",
    "normalize_country3",
    "postal_main_part",
]
