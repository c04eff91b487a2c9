"""
Metrics Collection

Features:
- Counters, Gauges, Timers
- Labels/dimensions
- Prometheus-compatible
- Call instrumentation (timer + error counter per operation)
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from collections import defaultdict
import threading
import time
import json

from pydantic import BaseModel, Field


# =============================================================================
# Metric Types
# =============================================================================

class MetricType(str, Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class MetricValue(BaseModel):
    """A metric data point."""
    name: str
    type: MetricType
    value: float
    labels: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _labels_key(labels: Dict[str, str] = None) -> str:
    """Create a key from labels."""
    if not labels:
        return ""
    return json.dumps(labels, sort_keys=True)


# =============================================================================
# Counter
# =============================================================================

class Counter:
    """
    A monotonically increasing counter.

    Usage:
        fetch_count = Counter("bulkfetch_fetches_total", "Total fetches")
        fetch_count.inc()
        fetch_count.inc(labels={"resource_type": "Coverage"})
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, value: float = 1.0, labels: Dict[str, str] = None):
        """Increment the counter."""
        if value < 0:
            raise ValueError("Counters can only be incremented")
        key = _labels_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Dict[str, str] = None) -> float:
        """Get current counter value."""
        return self._values.get(_labels_key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        """Collect all metric values."""
        values = []
        for key, value in list(self._values.items()):
            labels = json.loads(key) if key else {}
            values.append(MetricValue(
                name=self.name,
                type=MetricType.COUNTER,
                value=value,
                labels=labels,
            ))
        return values


# =============================================================================
# Gauge
# =============================================================================

class Gauge:
    """A metric that can go up and down, e.g. fetches in flight."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, value: float = 1.0, labels: Dict[str, str] = None):
        key = _labels_key(labels)
        with self._lock:
            self._values[key] += value

    def dec(self, value: float = 1.0, labels: Dict[str, str] = None):
        key = _labels_key(labels)
        with self._lock:
            self._values[key] -= value

    def get(self, labels: Dict[str, str] = None) -> float:
        return self._values.get(_labels_key(labels), 0.0)

    def collect(self) -> List[MetricValue]:
        values = []
        for key, value in list(self._values.items()):
            labels = json.loads(key) if key else {}
            values.append(MetricValue(
                name=self.name,
                type=MetricType.GAUGE,
                value=value,
                labels=labels,
            ))
        return values


# =============================================================================
# Timer
# =============================================================================

class TimerContext:
    """A running timing. Stopping more than once records only once."""

    def __init__(self, timer: "Timer", labels: Dict[str, str] = None):
        self._timer = timer
        self._labels = labels
        self._started = time.perf_counter()
        self._elapsed: Optional[float] = None

    def stop(self) -> float:
        """Stop the timing and record the elapsed seconds."""
        if self._elapsed is None:
            self._elapsed = time.perf_counter() - self._started
            self._timer.observe(self._elapsed, self._labels)
        return self._elapsed

    def __enter__(self) -> "TimerContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


class Timer:
    """
    Histogram of call durations in seconds.

    Usage:
        with timer.time():
            await client.request_capabilities()
    """

    BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description

        self._lock = threading.Lock()
        # label_key -> {bucket -> count, sum, count}
        self._data: Dict[str, Dict] = defaultdict(lambda: {
            "buckets": {b: 0 for b in self.BUCKETS},
            "sum": 0.0,
            "count": 0,
        })

    def time(self, labels: Dict[str, str] = None) -> TimerContext:
        return TimerContext(self, labels)

    def observe(self, seconds: float, labels: Dict[str, str] = None):
        key = _labels_key(labels)
        with self._lock:
            data = self._data[key]
            data["sum"] += seconds
            data["count"] += 1
            # Bucket counts are cumulative
            for bucket in self.BUCKETS:
                if seconds <= bucket:
                    data["buckets"][bucket] += 1

    def count(self, labels: Dict[str, str] = None) -> int:
        data = self._data.get(_labels_key(labels))
        return data["count"] if data else 0

    def collect(self) -> List[MetricValue]:
        values = []
        for key, data in list(self._data.items()):
            labels = json.loads(key) if key else {}

            for bucket in self.BUCKETS:
                values.append(MetricValue(
                    name=f"{self.name}_bucket",
                    type=MetricType.HISTOGRAM,
                    value=data["buckets"][bucket],
                    labels={**labels, "le": str(bucket)},
                ))

            values.append(MetricValue(
                name=f"{self.name}_bucket",
                type=MetricType.HISTOGRAM,
                value=data["count"],
                labels={**labels, "le": "+Inf"},
            ))
            values.append(MetricValue(
                name=f"{self.name}_sum",
                type=MetricType.HISTOGRAM,
                value=data["sum"],
                labels=labels,
            ))
            values.append(MetricValue(
                name=f"{self.name}_count",
                type=MetricType.HISTOGRAM,
                value=data["count"],
                labels=labels,
            ))

        return values


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Central metrics collector.

    Manages all metrics and provides Prometheus-compatible output.
    """

    def __init__(self):
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, factory):
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            return self._metrics[name]

    def counter(self, name: str, description: str = "") -> Counter:
        """Create or get a counter."""
        return self._get_or_create(name, lambda: Counter(name, description))

    def gauge(self, name: str, description: str = "") -> Gauge:
        """Create or get a gauge."""
        return self._get_or_create(name, lambda: Gauge(name, description))

    def timer(self, name: str, description: str = "") -> Timer:
        """Create or get a timer."""
        return self._get_or_create(name, lambda: Timer(name, description))

    def get(self, name: str) -> Optional[Any]:
        return self._metrics.get(name)

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []

        for name, metric in list(self._metrics.items()):
            lines.append(f"# HELP {name} {metric.description}")

            if isinstance(metric, Counter):
                lines.append(f"# TYPE {name} counter")
            elif isinstance(metric, Gauge):
                lines.append(f"# TYPE {name} gauge")
            elif isinstance(metric, Timer):
                lines.append(f"# TYPE {name} histogram")

            for value in metric.collect():
                if value.labels:
                    labels_str = ",".join(f'{k}="{v}"' for k, v in value.labels.items())
                    lines.append(f"{value.name}{{{labels_str}}} {value.value}")
                else:
                    lines.append(f"{value.name} {value.value}")

        return "\n".join(lines)


# =============================================================================
# Instrumentation
# =============================================================================

class MetricMaker:
    """
    Registers one timer and one error counter per named operation of a
    component, e.g. `source_client_requestEOB_seconds` and
    `source_client_requestEOB_errors_total`.
    """

    def __init__(self, collector: MetricsCollector, component: str):
        self.collector = collector
        self.component = component

    def register_timers(self, names: Iterable[str]) -> Dict[str, Timer]:
        return {
            name: self.collector.timer(
                f"{self.component}_{name}_seconds",
                f"Duration of {name} calls",
            )
            for name in names
        }

    def register_counters(self, names: Iterable[str]) -> Dict[str, Counter]:
        return {
            name: self.collector.counter(
                f"{self.component}_{name}_errors_total",
                f"Failed {name} calls",
            )
            for name in names
        }


@contextmanager
def instrument(timer: Timer, error_counter: Counter) -> Iterator[None]:
    """
    Time the enclosed call and count it as an error if it raises.

    The exception is re-raised unchanged.
    """
    with timer.time():
        try:
            yield
        except Exception:
            error_counter.inc()
            raise


# Global metrics collector
_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
