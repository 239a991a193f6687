"""
Metrics collection for the fee splitter service.

Thread-safe counters, gauges and histograms with optional labels,
exportable as JSON or in the Prometheus text format (``feesplit_`` prefix).

Splitter metrics:
- deposits_total, dispatches_total
- commands_failed_total{action, error}
HTTP metrics are recorded by monitoring.middleware.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

METRIC_PREFIX = "feesplit"

# Latency buckets in milliseconds
DEFAULT_BUCKETS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)


@dataclass
class Histogram:
    """Cumulative-bucket histogram."""

    bounds: tuple[float, ...] = DEFAULT_BUCKETS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)  # last slot is +Inf

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[i] += 1
        self.counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts))


class MetricsCollector:
    """Collects counters, gauges and histograms keyed by name and label set."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    @staticmethod
    def _labels_key(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counters

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def increment_gauge(self, name: str, value: float = 1.0,
                        labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] += value

    def decrement_gauge(self, name: str, value: float = 1.0,
                        labels: dict[str, str] | None = None) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            key = self._labels_key(labels)
            if key not in self._histograms[name]:
                self._histograms[name][key] = Histogram()
            self._histograms[name][key].observe(value_ms)

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Time the enclosed block in milliseconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            def flatten(values: dict[str, Any]) -> Any:
                if set(values) == {""}:
                    return values[""]
                return dict(values)

            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {name: flatten(v) for name, v in self._counters.items()},
                "gauges": {name: flatten(v) for name, v in self._gauges.items()},
                "histograms": {
                    name: {
                        (key or "_total"): {
                            "count": hist.count,
                            "sum": hist.sum,
                            "avg": hist.sum / hist.count if hist.count else 0,
                            "buckets": dict(hist.buckets()),
                        }
                        for key, hist in histograms.items()
                    }
                    for name, histograms in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Export in Prometheus text exposition format."""
        lines = []
        with self._lock:
            lines += [
                f"# HELP {METRIC_PREFIX}_uptime_seconds Time since application start",
                f"# TYPE {METRIC_PREFIX}_uptime_seconds gauge",
                f"{METRIC_PREFIX}_uptime_seconds {time.time() - self._start_time:.2f}",
                "",
            ]

            for kind, store in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in store.items():
                    metric = f"{METRIC_PREFIX}_{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    for key, value in values.items():
                        lines.append(f"{metric}{{{key}}} {value}" if key else f"{metric} {value}")
                    lines.append("")

            for name, histograms in self._histograms.items():
                metric = f"{METRIC_PREFIX}_{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in histograms.items():
                    prefix = f"{key}," if key else ""
                    for le, count in hist.buckets():
                        lines.append(f'{metric}_bucket{{{prefix}le="{le}"}} {count}')
                    suffix = f"{{{key}}}" if key else ""
                    lines.append(f"{metric}_sum{suffix} {hist.sum:.2f}")
                    lines.append(f"{metric}_count{suffix} {hist.count}")
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = MetricsCollector()
