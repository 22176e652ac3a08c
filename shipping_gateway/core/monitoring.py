"""
Monitoring utilities

- MetricsCollector: in-memory, thread-safe gauge sink
- InstrumentationTicker: background thread that fires a callback on a fixed interval

Shipping systems flush their operation counters into a MetricsCollector on
every tick while instrumentation is enabled.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Tuple
from threading import Lock

logger = logging.getLogger(__name__)


MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class GaugeSample:
    """Last value written to a gauge and when."""
    value: float
    recorded_at: datetime


class MetricsCollector:
    """
    In-memory metrics sink.

    Gauges keep only their last sample. Series are keyed by name plus a
    sorted label tuple, so equal label dicts built in any order hit the
    same series.
    """

    def __init__(self):
        self._gauges: Dict[MetricKey, GaugeSample] = {}
        self._lock = Lock()

    @staticmethod
    def _key(name: str, labels: Optional[Mapping[str, str]]) -> MetricKey:
        return name, tuple(sorted((labels or {}).items()))

    @staticmethod
    def _render(key: MetricKey) -> str:
        name, labels = key
        if not labels:
            return name
        return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"

    def gauge(self, name: str, value: float, labels: Optional[Mapping[str, str]] = None) -> None:
        sample = GaugeSample(value, datetime.now(timezone.utc))
        with self._lock:
            self._gauges[self._key(name, labels)] = sample

    def get_gauge(self, name: str, labels: Optional[Mapping[str, str]] = None) -> Optional[float]:
        with self._lock:
            sample = self._gauges.get(self._key(name, labels))
        return sample.value if sample else None

    def snapshot(self) -> Dict[str, float]:
        """Rendered series names ("name{k=v}") to their last values."""
        with self._lock:
            return {self._render(k): s.value for k, s in self._gauges.items()}


# Process-wide sink used when a shipping system is given none
metrics = MetricsCollector()


class InstrumentationTicker:
    """
    Calls `callback` every `interval_seconds` on a daemon thread until stopped.

    The callback never runs concurrently with itself. Exceptions raised by
    the callback are logged and do not stop the ticker.
    """

    def __init__(self, name: str, interval_seconds: float, callback: Callable[[], None]):
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"instrumentation-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Instrumentation ticker started for {self.name} every {self.interval_seconds}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"Instrumentation ticker stopped for {self.name}")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self._callback()
            except Exception:
                logger.exception(f"Instrumentation tick failed for {self.name}")
