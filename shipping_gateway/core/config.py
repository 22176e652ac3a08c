"""
Application configuration

Two layers:
- Settings: flat process settings from environment / .env (pydantic-settings)
- Configuration tree: the declarative shipping-processing tree that shipping
  systems bind their carrier catalogs from (JSON file or in-memory mapping)
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from shipping_gateway.core.exceptions import ShippingConfigError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Declarative configuration tree (JSON). Empty means no global tree.
    SHIPPING_CONFIG_PATH: str = ""

    # Defaults applied to shipping systems unless their section overrides them
    SHIPPING_WEB_SERVICE_CALL_TIMEOUT_MS: int = 20000
    SHIPPING_INSTRUMENTATION_INTERVAL_MS: int = 4015

    # Shippo
    SHIPPO_API_BASE: str = "https://api.goshippo.com"
    SHIPPO_TRACKING_DOMAIN: str = "http://tracking.goshippo.com"


settings = Settings()


def load_config_root(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the global configuration tree.

    Args:
        path: JSON file to read; defaults to settings.SHIPPING_CONFIG_PATH

    Returns:
        Parsed tree, or an empty dict when no path is configured

    Raises:
        ShippingConfigError: file missing or not a JSON object
    """
    path = path if path is not None else settings.SHIPPING_CONFIG_PATH
    if not path:
        return {}

    config_file = Path(path)
    if not config_file.exists():
        raise ShippingConfigError(
            f"Shipping configuration file not found: {path}",
            details={"path": path},
        )

    try:
        tree = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ShippingConfigError(
            f"Shipping configuration file is not valid JSON: {path}",
            details={"path": path, "error": str(e)},
        ) from e

    if not isinstance(tree, dict):
        raise ShippingConfigError(
            f"Shipping configuration root must be an object: {path}",
            details={"path": path},
        )

    logger.debug(f"Loaded shipping configuration tree from {path}")
    return tree
