"""
Shipping Module v1.0.0

- ShippingSystem: abstract provider connector (catalog, sessions, stats)
- ShippingSession: capability-gated handle bound to one credential set
- make_system: factory instantiating registered providers by type
"""
from shipping_gateway.modules.shipping.session import ConnectionParameters, ShippingSession, User
from shipping_gateway.modules.shipping.system import Capabilities, ComponentStatus, ShippingSystem
from shipping_gateway.modules.shipping.systems import make_system, register_system

__all__ = [
    "Capabilities",
    "ComponentStatus",
    "ConnectionParameters",
    "ShippingSession",
    "ShippingSystem",
    "User",
    "make_system",
    "register_system",
]
