"""
Shipping System base v1.0.0

Abstract provider connector. Every provider (Shippo, ...) subclasses
ShippingSystem and implements:
- capabilities (which operations it supports)
- do_start_session / make_default_session_connect_params
- create_label, validate_address, estimate_shipping_cost

The base class owns:
- the carrier catalog, bound once from the declarative configuration tree
- the registry of live sessions (lock-guarded)
- per-operation counters, flushed to a metrics sink on a fixed interval
  while instrumentation is enabled
"""
from __future__ import annotations

import enum
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from pydantic import ValidationError

from shipping_gateway.core.config import load_config_root, settings
from shipping_gateway.core.exceptions import (
    AddressValidationError,
    ShippingConfigError,
    ShippingError,
    ShippingGatewayError,
)
from shipping_gateway.core.monitoring import InstrumentationTicker, MetricsCollector, metrics
from shipping_gateway.models.address import Address
from shipping_gateway.models.carrier import NamedRegistry, ShippingCarrier
from shipping_gateway.models.shipment import Label, Shipment, ShippingRate, TrackInfo
from shipping_gateway.modules.shipping.session import ConnectionParameters, ShippingSession
from shipping_gateway.schemas.shipping import CarrierConfig, ShippingSystemConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


CONFIG_SHIPPING_PROCESSING_SECTION = "shipping-processing"
CONFIG_SHIPPING_SYSTEM_SECTION = "shipping-system"

LOG_TOPIC = "Shipping.Processing"

OP_CREATE_LABEL = "create_label"
OP_TRACK_SHIPMENT = "track_shipment"
OP_VALIDATE_ADDRESS = "validate_address"
OP_ESTIMATE_SHIPPING_COST = "estimate_shipping_cost"

OPERATIONS = (OP_CREATE_LABEL, OP_TRACK_SHIPMENT, OP_VALIDATE_ADDRESS, OP_ESTIMATE_SHIPPING_COST)


class ComponentStatus(str, enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class Capabilities:
    """Which operations a shipping system supports. Sessions gate on these."""
    supports_label_creation: bool = False
    supports_shipment_tracking: bool = False
    supports_address_validation: bool = False
    supports_carrier_services: bool = False
    supports_shipping_cost_estimation: bool = False


class ShippingSystem(ABC):
    """
    Abstract base class for shipping provider connectors.

    Thread safety: operations may be called from many threads at once. The
    session registry and counters are lock-guarded; the carrier catalog is
    immutable after configure().
    """

    carrier_class = ShippingCarrier

    def __init__(
        self,
        name: str,
        node: Optional[Any] = None,
        config_root: Optional[Mapping[str, Any]] = None,
        metrics_sink: Optional[MetricsCollector] = None,
    ):
        """
        Create and configure the system.

        Args:
            name: Instance name, used to find its section in the config root
            node: Explicit shipping-system section (mapping or ShippingSystemConfig)
            config_root: Configuration tree searched when node is None
                (default: tree at settings.SHIPPING_CONFIG_PATH)
            metrics_sink: Where counters are flushed (default: global collector)
        """
        self.name = name
        self.keep_alive = True
        self._web_service_call_timeout_ms = settings.SHIPPING_WEB_SERVICE_CALL_TIMEOUT_MS

        self._status = ComponentStatus.STOPPED
        self._config: Optional[ShippingSystemConfig] = None
        self._default_session_connect_params_cfg: Optional[Dict[str, Any]] = None
        self._default_session_connect_params: Optional[ConnectionParameters] = None

        self._sessions: List[ShippingSession] = []
        self._sessions_lock = Lock()

        self._carriers: NamedRegistry[ShippingCarrier] = NamedRegistry("carrier")
        self._carriers.freeze()

        self._metrics = metrics_sink or metrics
        self._stats_lock = Lock()
        self._stats: Dict[str, int] = {}
        self._error_stats: Dict[str, int] = {}
        self._reset_stats()

        self._instrumentation_enabled = False
        self._ticker: Optional[InstrumentationTicker] = None
        self.instrumentation_interval_seconds = settings.SHIPPING_INSTRUMENTATION_INTERVAL_MS / 1000.0

        self.configure(node, config_root)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    @property
    def status(self) -> ComponentStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status == ComponentStatus.RUNNING

    def start(self) -> None:
        if self.is_running:
            return
        self._status = ComponentStatus.RUNNING
        if self._instrumentation_enabled:
            self._start_ticker()
        logger.info(f"Shipping system {self.name} started")

    def stop(self) -> None:
        if not self.is_running:
            return
        self._stop_ticker()
        self._status = ComponentStatus.STOPPED
        logger.info(f"Shipping system {self.name} stopped")

    # =========================================================================
    # Configuration
    # =========================================================================

    def configure(self, node: Optional[Any] = None, config_root: Optional[Mapping[str, Any]] = None) -> None:
        """
        Bind this system from a shipping-system section.

        With no explicit node, the shipping-processing section of the config
        root is searched for a shipping-system entry named like this instance,
        then for one without a name. No match leaves the system unconfigured.
        """
        if node is None:
            root = config_root if config_root is not None else load_config_root()
            node = self._find_system_section(root)
            if node is None:
                logger.info(f"No shipping-system section found for {self.name}; system left unconfigured")
                return

        if isinstance(node, ShippingSystemConfig):
            config = node
        else:
            try:
                config = ShippingSystemConfig.model_validate(node)
            except ValidationError as e:
                raise ShippingConfigError(
                    f"Invalid shipping-system configuration for {self.name}",
                    details={"errors": e.errors(include_url=False)},
                ) from e

        self._config = config
        self.keep_alive = config.keep_alive
        if config.web_service_call_timeout_ms is not None:
            self.web_service_call_timeout_ms = config.web_service_call_timeout_ms

        if config.default_session_connect_params is not None:
            self.default_session_connect_params_cfg = config.default_session_connect_params

        carriers: NamedRegistry[ShippingCarrier] = NamedRegistry("carrier")
        for carrier_cfg in config.carriers:
            carriers.register(self.make_carrier(carrier_cfg))
        carriers.freeze()
        self._carriers = carriers

        if config.instrumentation_enabled:
            self.enable_instrumentation()
        else:
            self.disable_instrumentation()

        logger.info(f"Shipping system {self.name} configured with {len(carriers)} carriers")

    def _find_system_section(self, root: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
        if not root:
            return None
        processing = root.get(CONFIG_SHIPPING_PROCESSING_SECTION)
        if not isinstance(processing, Mapping):
            return None

        sections = processing.get(CONFIG_SHIPPING_SYSTEM_SECTION)
        if isinstance(sections, Mapping):
            sections = [sections]
        if not isinstance(sections, list):
            return None
        sections = [s for s in sections if isinstance(s, Mapping)]

        # 1 the section with the same name as this instance
        for section in sections:
            section_name = section.get("name")
            if isinstance(section_name, str) and self.name and section_name.lower() == self.name.lower():
                return section

        # 2 a section without a name
        for section in sections:
            section_name = section.get("name")
            if section_name is None or (isinstance(section_name, str) and not section_name.strip()):
                return section

        return None

    def make_carrier(self, config: CarrierConfig) -> ShippingCarrier:
        """Build one catalog carrier; override carrier_class for provider-specific carriers."""
        return self.carrier_class(self, config)

    @property
    def config(self) -> Optional[ShippingSystemConfig]:
        return self._config

    @property
    def is_configured(self) -> bool:
        return self._config is not None

    @property
    def web_service_call_timeout_ms(self) -> int:
        return self._web_service_call_timeout_ms

    @web_service_call_timeout_ms.setter
    def web_service_call_timeout_ms(self, value: int) -> None:
        self._web_service_call_timeout_ms = value if value > 0 else 0

    @property
    def default_session_connect_params_cfg(self) -> Optional[Dict[str, Any]]:
        return self._default_session_connect_params_cfg

    @default_session_connect_params_cfg.setter
    def default_session_connect_params_cfg(self, section: Optional[Dict[str, Any]]) -> None:
        self._default_session_connect_params = (
            self.make_default_session_connect_params(section) if section is not None else None
        )
        self._default_session_connect_params_cfg = section

    @property
    def default_session_connect_params(self) -> Optional[ConnectionParameters]:
        return self._default_session_connect_params

    # =========================================================================
    # Sessions
    # =========================================================================

    @property
    def sessions(self) -> Tuple[ShippingSession, ...]:
        with self._sessions_lock:
            return tuple(self._sessions)

    def _register_session(self, session: ShippingSession) -> None:
        with self._sessions_lock:
            self._sessions.append(session)

    def _unregister_session(self, session: ShippingSession) -> None:
        with self._sessions_lock:
            if session in self._sessions:
                self._sessions.remove(session)

    def start_session(self, params: Optional[ConnectionParameters] = None) -> ShippingSession:
        """Start a session; falls back to the default connect params when none given."""
        return self.do_start_session(params)

    # =========================================================================
    # Provider contract
    # =========================================================================

    @property
    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Static capability descriptor of this provider."""
        pass

    @abstractmethod
    def do_start_session(self, params: Optional[ConnectionParameters] = None) -> ShippingSession:
        pass

    @abstractmethod
    def make_default_session_connect_params(self, section: Dict[str, Any]) -> ConnectionParameters:
        pass

    @abstractmethod
    def create_label(self, session: ShippingSession, context: Any, shipment: Shipment) -> Label:
        pass

    @abstractmethod
    def validate_address(
        self, session: ShippingSession, context: Any, address: Address
    ) -> Tuple[Optional[Address], Optional[AddressValidationError]]:
        pass

    @abstractmethod
    def estimate_shipping_cost(
        self, session: ShippingSession, context: Any, shipment: Shipment
    ) -> Optional[ShippingRate]:
        pass

    def track_shipment(
        self, session: ShippingSession, context: Any, carrier_id: str, tracking_number: str
    ) -> TrackInfo:
        """Default tracking: no provider lookup, only the carrier's public tracking URL."""
        return TrackInfo(
            tracking_url=self.get_tracking_url(session, context, carrier_id, tracking_number),
            tracking_number=tracking_number,
            carrier_id=carrier_id,
        )

    def get_tracking_url(
        self, session: ShippingSession, context: Any, carrier_id: str, tracking_number: str
    ) -> Optional[str]:
        """Format the configured carrier's tracking-URL template, if any."""
        carrier = self.find_carrier(session, context, carrier_id)
        if carrier is None:
            return None
        return carrier.format_tracking_url(tracking_number)

    def get_shipping_carriers(self, session: ShippingSession, context: Any) -> Iterable[ShippingCarrier]:
        return tuple(self._carriers)

    def find_carrier(self, session: ShippingSession, context: Any, carrier_id: Optional[str]) -> Optional[ShippingCarrier]:
        """Case-insensitive carrier lookup by name."""
        if not carrier_id:
            return None
        carrier_id = carrier_id.strip().lower()
        for carrier in self.get_shipping_carriers(session, context):
            if carrier.name.lower() == carrier_id:
                return carrier
        return None

    # =========================================================================
    # Logging
    # =========================================================================

    def write_log(
        self,
        level: int,
        source: str,
        message: str,
        error: Optional[BaseException] = None,
        related_to: Optional[str] = None,
    ) -> str:
        """
        Write a shipping log record and return its id.

        Records for one call share the id of its start-of-operation record
        in `related_to`.
        """
        log_id = uuid.uuid4().hex
        extra = {
            "topic": LOG_TOPIC,
            "log_id": log_id,
            "related_to": related_to,
            "shipping_system": self.name,
        }
        if isinstance(error, ShippingGatewayError):
            extra["error"] = error.to_dict()
        logger.log(level, f"[{self.name}] {source}: {message}", exc_info=error, extra=extra)
        return log_id

    def _run_operation(
        self,
        operation: str,
        start_message: str,
        error_header: Callable[[BaseException], str],
        action: Callable[[str], T],
    ) -> T:
        """
        Common call template for provider operations.

        Logs the start, runs the action with the start record id, and on any
        failure bumps the operation's error counter, logs the error with its
        cause and raises a ShippingError wrapping it.
        """
        log_id = self.write_log(logging.INFO, f"{operation}()", start_message)
        try:
            return action(log_id)
        except Exception as e:
            self._stat_error(operation)
            self.write_log(logging.ERROR, f"{operation}()", error_header(e), error=e, related_to=log_id)
            if isinstance(e, ShippingError):
                raise
            raise ShippingError.compose(str(e), e) from e

    # =========================================================================
    # Instrumentation
    # =========================================================================

    @property
    def instrumentation_enabled(self) -> bool:
        return self._instrumentation_enabled

    def enable_instrumentation(self) -> None:
        """Reset counters and schedule the periodic flush (once running)."""
        if self._instrumentation_enabled:
            return
        self._reset_stats()
        self._instrumentation_enabled = True
        if self.is_running:
            self._start_ticker()

    def disable_instrumentation(self) -> None:
        """Cancel the periodic flush."""
        if not self._instrumentation_enabled:
            return
        self._instrumentation_enabled = False
        self._stop_ticker()

    def _start_ticker(self) -> None:
        if self._ticker is None:
            self._ticker = InstrumentationTicker(self.name, self.instrumentation_interval_seconds, self.dump_stats)
        self._ticker.start()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    def _stat(self, operation: str) -> None:
        with self._stats_lock:
            self._stats[operation] += 1

    def _stat_error(self, operation: str) -> None:
        with self._stats_lock:
            self._error_stats[operation] += 1

    def _reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = {op: 0 for op in OPERATIONS}
            self._error_stats = {op: 0 for op in OPERATIONS}

    def stats_snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._stats_lock:
            return {
                op: {"count": self._stats[op], "error_count": self._error_stats[op]}
                for op in OPERATIONS
            }

    def dump_stats(self) -> None:
        """Read-and-reset all counters and forward them to the metrics sink."""
        with self._stats_lock:
            counts = self._stats
            errors = self._error_stats
            self._stats = {op: 0 for op in OPERATIONS}
            self._error_stats = {op: 0 for op in OPERATIONS}

        labels = {"source": self.name}
        for op in OPERATIONS:
            self._metrics.gauge(f"shipping.{op}.count", counts[op], labels)
            self._metrics.gauge(f"shipping.{op}.error_count", errors[op], labels)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, status={self._status.value})"
