"""In-process metrics with Prometheus text export.

Counters, gauges and histograms are kept in a :class:`MetricsRegistry`
and rendered with :func:`generate_metrics_text`.  Only the standard
library is used; a scrape endpoint or the CLI can print the text as is.
"""

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple

LabelKey = Tuple[str, ...]


class MetricsRegistry:
    """Ordered collection of metrics."""

    def __init__(self) -> None:
        self._metrics: List["Metric"] = []

    def register(self, metric: "Metric") -> None:
        self._metrics.append(metric)

    def __iter__(self):
        return iter(list(self._metrics))

    def reset(self) -> None:
        """Clear recorded values of every metric (used by tests)."""
        for metric in self._metrics:
            metric.reset()


REGISTRY = MetricsRegistry()


def _escape_label(value: str) -> str:
    """Escape a label value for the exposition format."""
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


class Metric:
    """Base class: name, help text, label names and a lock."""

    kind = "untyped"

    def __init__(
        self,
        name: str,
        description: str,
        label_names: Iterable[str] = (),
        registry: Optional[MetricsRegistry] = REGISTRY,
    ) -> None:
        self.name = name
        self.description = description
        self.label_names = tuple(label_names)
        self._lock = Lock()
        if registry is not None:
            registry.register(self)

    def _key(self, labels: Dict[str, str]) -> LabelKey:
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"Unknown labels for {self.name}: {sorted(unknown)}")
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def _render_labels(self, key: LabelKey, extra: Optional[Tuple[str, str]] = None) -> str:
        pairs = [f'{name}="{_escape_label(value)}"' for name, value in zip(self.label_names, key)]
        if extra is not None:
            pairs.append(f'{extra[0]}="{_escape_label(extra[1])}"')
        return "{" + ",".join(pairs) + "}" if pairs else ""

    def header(self) -> List[str]:
        return [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]

    def reset(self) -> None:
        raise NotImplementedError

    def to_prometheus(self) -> List[str]:
        raise NotImplementedError


class Counter(Metric):
    """Monotonic counter, e.g. ``RECEIPTS_TOTAL.inc(kind="SALE")``."""

    kind = "counter"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._values: Dict[LabelKey, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> List[str]:
        lines = self.header()
        with self._lock:
            for key, value in self._values.items():
                lines.append(f"{self.name}{self._render_labels(key)} {value}")
        return lines


class Gauge(Metric):
    """Value that may go up or down."""

    kind = "gauge"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._values: Dict[LabelKey, float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def value(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> List[str]:
        lines = self.header()
        with self._lock:
            for key, value in self._values.items():
                lines.append(f"{self.name}{self._render_labels(key)} {value}")
        return lines


class Histogram(Metric):
    """Cumulative-bucket histogram; observations above the last bound land in ``+Inf``."""

    kind = "histogram"

    def __init__(self, name: str, description: str, label_names: Iterable[str] = (),
                 buckets: Iterable[float] = (0.001, 0.01, 0.1, 1.0), **kwargs) -> None:
        super().__init__(name, description, label_names, **kwargs)
        self.buckets = sorted(float(b) for b in buckets)
        self._counts: Dict[LabelKey, List[int]] = {}
        self._sums: Dict[LabelKey, float] = defaultdict(float)
        self._totals: Dict[LabelKey, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            counts = self._counts.setdefault(key, [0] * len(self.buckets))
            for idx, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[idx] += 1
            self._totals[key] += 1
            self._sums[key] += float(value)

    def count(self, **labels: str) -> int:
        with self._lock:
            return self._totals.get(self._key(labels), 0)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._sums.clear()
            self._totals.clear()

    def to_prometheus(self) -> List[str]:
        lines = self.header()
        with self._lock:
            for key, total in self._totals.items():
                # counts are already cumulative: each bound counts every value <= it
                for bound, count in zip(self.buckets, self._counts[key]):
                    lines.append(f"{self.name}_bucket{self._render_labels(key, ('le', str(bound)))} {count}")
                lines.append(f"{self.name}_bucket{self._render_labels(key, ('le', '+Inf'))} {total}")
                lines.append(f"{self.name}_sum{self._render_labels(key)} {self._sums[key]}")
                lines.append(f"{self.name}_count{self._render_labels(key)} {total}")
        return lines


def generate_metrics_text(registry: MetricsRegistry = REGISTRY) -> bytes:
    """Render every metric in ``registry`` in Prometheus text format."""
    lines: List[str] = []
    for metric in registry:
        lines.extend(metric.to_prometheus())
    return ("\n".join(lines) + "\n").encode("utf-8")


# -----------------------------------------------------------------------------
# Checkout engine metrics
# -----------------------------------------------------------------------------

SETTLE_DURATION_SECONDS = Histogram(
    name="settle_duration_seconds",
    description="Duration of settle operations in seconds",
    label_names=["kind"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
)

SETTLE_ERROR_TOTAL = Counter(
    name="settle_error_total",
    description="Settle attempts rejected, labelled by error kind",
    label_names=["type"],
)

RECEIPTS_TOTAL = Counter(
    name="receipts_total",
    description="Receipts issued, labelled by kind",
    label_names=["kind"],
)

ITEMS_REJECTED_TOTAL = Counter(
    name="items_rejected_total",
    description="Line item additions rejected, labelled by error kind",
    label_names=["type"],
)

STOCK_ADJUSTMENTS_TOTAL = Counter(
    name="stock_adjustments_total",
    description="Per-product stock changes applied, labelled by direction",
    label_names=["direction"],
)

PENDING_LINE_ITEMS = Gauge(
    name="pending_line_items",
    description="Line items in the open transaction, labelled by register",
    label_names=["register"],
)
