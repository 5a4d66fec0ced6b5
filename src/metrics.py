"""Simple metrics library using only the Python standard library.

Counters, gauges and histograms in the spirit of Prometheus.  Every metric
registers itself in a module-level registry and ``generate_metrics_text()``
renders the registry in the Prometheus text exposition format.
"""

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, List, Tuple

LabelKey = Tuple[str, ...]


class Metric:
    """Base class for all metrics."""

    kind = "untyped"

    def __init__(self, name: str, description: str, label_names: Iterable[str] = ()):
        self.name = name
        self.description = description
        self.label_names = list(label_names)
        self._lock = Lock()
        _METRIC_REGISTRY.append(self)

    def _key(self, labels: Dict[str, object]) -> LabelKey:
        return tuple(str(labels.get(k, "")) for k in self.label_names)

    def _format_labels(self, key: LabelKey, **more: str) -> str:
        pairs = [f'{n}="{v}"' for n, v in zip(self.label_names, key)]
        pairs += [f'{n}="{v}"' for n, v in more.items()]
        return "{" + ",".join(pairs) + "}" if pairs else ""

    def _header(self) -> List[str]:
        return [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]

    def to_prometheus(self) -> List[str]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class Counter(Metric):
    """Monotonic counter.  ``ORDERS_CREATED_TOTAL.inc(channel="cart")``."""

    kind = "counter"

    def __init__(self, name: str, description: str, label_names: Iterable[str] = ()):
        super().__init__(name, description, label_names)
        self._values: Dict[LabelKey, int] = defaultdict(int)

    def inc(self, amount: int = 1, **labels: object) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[self._key(labels)] += amount

    def value(self, **labels: object) -> int:
        with self._lock:
            return self._values.get(self._key(labels), 0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> List[str]:
        lines = self._header()
        with self._lock:
            for key, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(key)} {value}")
        return lines


class Gauge(Metric):
    """A value that may go up or down."""

    kind = "gauge"

    def __init__(self, name: str, description: str, label_names: Iterable[str] = ()):
        super().__init__(name, description, label_names)
        self._values: Dict[LabelKey, float] = {}

    def set(self, value: float, **labels: object) -> None:
        with self._lock:
            self._values[self._key(labels)] = float(value)

    def inc(self, amount: float = 1.0, **labels: object) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def dec(self, amount: float = 1.0, **labels: object) -> None:
        self.inc(-amount, **labels)

    def value(self, **labels: object) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> List[str]:
        lines = self._header()
        with self._lock:
            for key, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(key)} {value}")
        return lines


class Histogram(Metric):
    """Histogram with fixed, ascending bucket upper bounds.

    Observations above the largest bound only land in ``+Inf``.
    """

    kind = "histogram"

    def __init__(self, name: str, description: str, label_names: Iterable[str], buckets: Iterable[float]):
        super().__init__(name, description, label_names)
        self.buckets = sorted(float(b) for b in buckets)
        # Non-cumulative per-bucket counts; made cumulative on export
        self._counts: Dict[LabelKey, List[int]] = defaultdict(lambda: [0] * len(self.buckets))
        self._sums: Dict[LabelKey, float] = defaultdict(float)
        self._totals: Dict[LabelKey, int] = defaultdict(int)

    def observe(self, value: float, **labels: object) -> None:
        key = self._key(labels)
        with self._lock:
            for idx, bound in enumerate(self.buckets):
                if value <= bound:
                    self._counts[key][idx] += 1
                    break
            self._totals[key] += 1
            self._sums[key] += float(value)

    def count(self, **labels: object) -> int:
        with self._lock:
            return self._totals.get(self._key(labels), 0)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._sums.clear()
            self._totals.clear()

    def to_prometheus(self) -> List[str]:
        lines = self._header()
        with self._lock:
            for key, total in self._totals.items():
                cumulative = 0
                for idx, bound in enumerate(self.buckets):
                    cumulative += self._counts[key][idx]
                    lines.append(f"{self.name}_bucket{self._format_labels(key, le=str(bound))} {cumulative}")
                lines.append(f"{self.name}_bucket{self._format_labels(key, le='+Inf')} {total}")
                lines.append(f"{self.name}_sum{self._format_labels(key)} {self._sums[key]}")
                lines.append(f"{self.name}_count{self._format_labels(key)} {total}")
        return lines


_METRIC_REGISTRY: List[Metric] = []


def generate_metrics_text() -> bytes:
    """Render every registered metric in the Prometheus text format."""
    lines: List[str] = []
    for metric in _METRIC_REGISTRY:
        lines.extend(metric.to_prometheus())
    return "\n".join(lines).encode("utf-8")


def reset_all() -> None:
    for metric in _METRIC_REGISTRY:
        metric.reset()


# -----------------------------------------------------------------------------
# Marketplace metrics
# -----------------------------------------------------------------------------

CHECKOUT_DURATION_SECONDS = Histogram(
    name="checkout_duration_seconds",
    description="Duration of checkout confirmations in seconds",
    label_names=["outcome"],
    buckets=[0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0],
)

CHECKOUT_ERROR_TOTAL = Counter(
    name="checkout_error_total",
    description="Checkout attempts rejected, labelled by reason",
    label_names=["type"],
)

ORDERS_CREATED_TOTAL = Counter(
    name="orders_created_total",
    description="Orders created, labelled by channel (cart or direct)",
    label_names=["channel"],
)

LOW_STOCK_ALERTS_TOTAL = Counter(
    name="low_stock_alerts_total",
    description="Low-stock alerts raised",
)

RATINGS_SUBMITTED_TOTAL = Counter(
    name="ratings_submitted_total",
    description="Farmer ratings submitted, labelled by star value",
    label_names=["rating"],
)

OUTBOUND_TASKS_TOTAL = Counter(
    name="outbound_tasks_total",
    description="Outbound notification tasks finished, labelled by kind and status",
    label_names=["kind", "status"],
)

OUTBOUND_QUEUE_DEPTH = Gauge(
    name="outbound_queue_depth",
    description="Outbound notification tasks waiting to run",
)
