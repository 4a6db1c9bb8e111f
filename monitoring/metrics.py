"""
Metrics Collection - Monitoring Layer

In-process counters and gauges keyed by label values, exported in the
Prometheus text format on /metrics. The bridge records connected clients,
relayed frames, failed deliveries and program refresh outcomes.

@.architecture
Incoming: app.py, relay/hub.py, core/deploy/watcher.py --- {str metric_name, float value, label keyword arguments}
Processing: inc(), dec(), set(), collect_all(), export_prometheus() --- {3 jobs: metric_creation, recording, export}
Outgoing: /metrics endpoint, tests --- {Counter/Gauge instances, Dict[str, Any] snapshot, str Prometheus text}
"""

import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

LabelKey = Tuple[str, ...]


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


class _Series:
    """
    One named metric with a value per label combination.

    Every recording call must pass exactly the label names declared at
    creation.
    """

    metric_type: MetricType

    def __init__(self, name: str, help_text: str, labels: Optional[List[str]] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = list(labels or [])
        self._values: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Dict[str, str]) -> LabelKey:
        if set(labels) != set(self.label_names):
            raise ValueError(f"{self.name} expects labels {self.label_names}, got {sorted(labels)}")
        return tuple(str(labels[name]) for name in self.label_names)

    def _add(self, amount: float, labels: Dict[str, str]) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def get(self, **labels: str) -> float:
        """Current value for a label combination (0.0 if never recorded)."""
        return self._values.get(self._key(labels), 0.0)

    def collect(self) -> List[Tuple[Dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        return [(dict(zip(self.label_names, key)), value) for key, value in items]


class Counter(_Series):
    """Monotonically increasing count (frames, failures, deploys)."""

    metric_type = MetricType.COUNTER

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """
        Increment the counter.

        Raises:
            ValueError: If value is negative or labels don't match
        """
        if value < 0:
            raise ValueError("Counter can only be incremented by non-negative values")
        self._add(value, labels)


class Gauge(_Series):
    """Value that goes up and down (connected clients)."""

    metric_type = MetricType.GAUGE

    def inc(self, value: float = 1.0, **labels: str) -> None:
        self._add(value, labels)

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self._add(-value, labels)

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = value


S = TypeVar("S", bound=_Series)


class MetricsRegistry:
    """
    Named metrics in registration order.

    Asking for an existing name returns the existing metric; asking for it
    as a different type is an error.
    """

    def __init__(self):
        self._metrics: Dict[str, _Series] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: Type[S], name: str, help_text: str, labels: Optional[List[str]]) -> S:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = cls(name, help_text, labels)
            elif not isinstance(metric, cls):
                raise ValueError(f"{name} is already registered as a {metric.metric_type.value}")
            return metric

    def counter(self, name: str, help_text: str, labels: Optional[List[str]] = None) -> Counter:
        return self._get_or_create(Counter, name, help_text, labels)

    def gauge(self, name: str, help_text: str, labels: Optional[List[str]] = None) -> Gauge:
        return self._get_or_create(Gauge, name, help_text, labels)

    def collect_all(self) -> Dict[str, Any]:
        """Snapshot keyed by metric type, then metric name."""
        snapshot: Dict[str, Any] = {t.value: {} for t in MetricType}
        for name, metric in self._metrics.items():
            snapshot[metric.metric_type.value][name] = {
                "help": metric.help_text,
                "values": metric.collect(),
            }
        return snapshot

    def export_prometheus(self) -> str:
        """Prometheus text exposition of every metric."""
        lines = []
        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.help_text}")
            lines.append(f"# TYPE {name} {metric.metric_type.value}")
            for labels, value in metric.collect():
                lines.append(f"{name}{_format_labels(labels)} {value}")
        return "\n".join(lines) + "\n"


def _format_labels(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"


_global_registry: Optional[MetricsRegistry] = None


def get_registry() -> MetricsRegistry:
    """Process-wide registry served on /metrics."""
    global _global_registry
    if _global_registry is None:
        _global_registry = MetricsRegistry()
    return _global_registry


def counter(name: str, help_text: str, labels: Optional[List[str]] = None) -> Counter:
    return get_registry().counter(name, help_text, labels)


def gauge(name: str, help_text: str, labels: Optional[List[str]] = None) -> Gauge:
    return get_registry().gauge(name, help_text, labels)


def setup_standard_metrics(registry: Optional[MetricsRegistry] = None) -> Dict[str, Any]:
    """
    Create the bridge's metrics.

    Args:
        registry: Registry to create them in (process-wide registry if None)

    Returns:
        Dict with keys clients, frames_total, send_failures_total, deploys_total
    """
    registry = registry or get_registry()

    return {
        'clients': registry.gauge(
            'devtools_clients',
            'Connected DevTools clients',
            labels=['kind'],
        ),
        'frames_total': registry.counter(
            'devtools_frames_total',
            'Frames relayed (bus_to_client, client_to_bus)',
            labels=['direction'],
        ),
        'send_failures_total': registry.counter(
            'devtools_send_failures_total',
            'Deliveries that failed and removed the session',
            labels=['kind'],
        ),
        'deploys_total': registry.counter(
            'devtools_deploys_total',
            'Program refreshes (deployed, skipped, empty)',
            labels=['outcome'],
        ),
    }
