"""
Shipping System Registry and Factory

- Providers register themselves with @register_system("<type>")
- make_system() instantiates the provider named by a section's "type"
"""
from typing import Any, Dict, List, Mapping, Optional, Type
import logging

from shipping_gateway.core.exceptions import ShippingConfigError
from shipping_gateway.modules.shipping.system import ShippingSystem

logger = logging.getLogger(__name__)

# Registry of shipping system implementations
_SYSTEM_REGISTRY: Dict[str, Type[ShippingSystem]] = {}


def register_system(system_type: str):
    """
    Decorator to register a shipping system implementation.

    Usage:
        @register_system("shippo")
        class ShippoSystem(ShippingSystem):
            ...
    """
    def decorator(cls: Type[ShippingSystem]):
        _SYSTEM_REGISTRY[system_type.lower()] = cls
        logger.debug(f"Registered shipping system: {system_type} -> {cls.__name__}")
        return cls
    return decorator


def get_registered_systems() -> List[str]:
    """Get list of all registered shipping system types."""
    return list(_SYSTEM_REGISTRY.keys())


def make_system(node: Mapping[str, Any], name: Optional[str] = None, **kwargs) -> ShippingSystem:
    """
    Create a shipping system from its configuration section.

    Args:
        node: shipping-system section; its "type" selects the implementation
        name: Instance name (defaults to the section's name, then its type)
        **kwargs: Passed to the system constructor (e.g. metrics_sink)

    Raises:
        ShippingConfigError: missing or unregistered type
    """
    system_type = node.get("type")
    if not system_type:
        raise ShippingConfigError("Shipping system section has no 'type'")

    system_cls = _SYSTEM_REGISTRY.get(str(system_type).lower())
    if not system_cls:
        raise ShippingConfigError(
            f"No implementation registered for shipping system type: {system_type}",
            details={"type": system_type, "registered": get_registered_systems()},
        )

    return system_cls(name or node.get("name") or str(system_type), node, **kwargs)


# Import systems to trigger registration
# These imports must be at the bottom to avoid circular imports
from shipping_gateway.modules.shipping.systems.shippo import ShippoSystem  # noqa: E402, F401
