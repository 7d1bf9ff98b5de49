"""In-process metrics registry: counters, gauges and latency summaries. Exported as JSON at /internal/metrics."""

import threading
from collections import deque
from typing import Any

# Recent latency observations kept per series.
LATENCY_WINDOW = 200


def _series(name: str, labels: dict[str, str]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """
    Thread-safe, in-memory. Series are keyed Prometheus-style as name{label=value,...}.
    One instance per process, owned by the service container.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._gauges: dict[str, float] = {}
        self._latencies: dict[str, deque[float]] = {}
        self._latency_totals: dict[str, tuple[int, float]] = {}

    def increment(self, name: str, value: float = 1.0, **labels: str) -> None:
        key = _series(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        with self._lock:
            self._gauges[_series(name, labels)] = value

    def observe_latency(self, name: str, latency_ms: float, **labels: str) -> None:
        key = _series(name, labels)
        with self._lock:
            self._latencies.setdefault(key, deque(maxlen=LATENCY_WINDOW)).append(latency_ms)
            count, total = self._latency_totals.get(key, (0, 0.0))
            self._latency_totals[key] = (count + 1, total + latency_ms)

    def counter(self, name: str, **labels: str) -> float:
        with self._lock:
            return self._counters.get(_series(name, labels), 0)

    def export_metrics(self) -> dict[str, Any]:
        with self._lock:
            latencies = {}
            for key, window in self._latencies.items():
                count, total = self._latency_totals[key]
                latencies[key] = {
                    "count": count,
                    "sum": total,
                    "max_recent": max(window) if window else None,
                    "last": window[-1] if window else None,
                }
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "latencies_ms": latencies,
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._latencies.clear()
            self._latency_totals.clear()
