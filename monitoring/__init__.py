"""
Monitoring Layer

- logging: structured log records stamped with the serving session's sender tag
- metrics: Prometheus-style counters and gauges for clients, frames and deploys
"""

from .logging import (
    LOGGING_PRESETS,
    ContextFilter,
    JSONFormatter,
    StructuredLogger,
    clear_sender_context,
    configure_from_preset,
    configure_logging,
    get_logger,
    get_sender,
    set_sender_context,
)
from .metrics import (
    Counter,
    Gauge,
    MetricsRegistry,
    MetricType,
    counter,
    gauge,
    get_registry,
    setup_standard_metrics,
)

__all__ = [
    # Logging
    'LOGGING_PRESETS',
    'ContextFilter',
    'JSONFormatter',
    'StructuredLogger',
    'clear_sender_context',
    'configure_from_preset',
    'configure_logging',
    'get_logger',
    'get_sender',
    'set_sender_context',

    # Metrics
    'Counter',
    'Gauge',
    'MetricsRegistry',
    'MetricType',
    'counter',
    'gauge',
    'get_registry',
    'setup_standard_metrics',
]
