"""In-process metrics for message handling."""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 100


class MetricsCollector:
    """Thread-safe counters, gauges and rolling histograms."""

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._lock = threading.RLock()
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._window = histogram_window

    @staticmethod
    def _make_key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            values = self._histograms[key]
            values.append(value)
            if len(values) > self._window:
                del values[: len(values) - self._window]

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        key = self._make_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def _stats(self, values: list[float]) -> dict[str, float]:
        if not values:
            return {}
        ordered = sorted(values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.5)],
            "p95": ordered[int(count * 0.95)] if count > 1 else ordered[-1],
        }

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, float]:
        key = self._make_key(name, labels)
        with self._lock:
            return self._stats(list(self._histograms.get(key, [])))

    def get_all_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {key: self._stats(values) for key, values in self._histograms.items()},
                "collected_at": datetime.now(timezone.utc).isoformat(),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Global metrics instance
metrics = MetricsCollector()


def record_command(intent: str, duration_ms: float, outcome: str = "ok") -> None:
    labels = {"intent": intent, "outcome": outcome}
    metrics.histogram("command_duration_ms", duration_ms, {"intent": intent})
    metrics.increment("commands_total", labels=labels)


def record_store_error(error_type: str) -> None:
    metrics.increment("store_errors_total", labels={"type": error_type})


def record_send(success: bool) -> None:
    metrics.increment("replies_sent_total", labels={"success": str(success).lower()})


def record_connection_state(state: str) -> None:
    metrics.increment("connection_state_changes_total", labels={"state": state})
    metrics.gauge("whatsapp_connected", 1.0 if state == "connected" else 0.0)
