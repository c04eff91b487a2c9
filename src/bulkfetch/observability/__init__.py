"""
bulkfetch Observability Module

- Metrics collection and per-call instrumentation
- Structured logging
"""

from bulkfetch.observability.metrics import (
    MetricsCollector,
    MetricMaker,
    Counter,
    Gauge,
    Timer,
    instrument,
    get_metrics_collector,
)
from bulkfetch.observability.logging import configure_logging, configure_from_settings

__all__ = [
    "MetricsCollector",
    "MetricMaker",
    "Counter",
    "Gauge",
    "Timer",
    "instrument",
    "get_metrics_collector",
    "configure_logging",
    "configure_from_settings",
]
