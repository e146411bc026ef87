# caredispatch/infra/metrics.py
"""
In-process counters and histograms, served as JSON on /metrics.

Per process only: with several replicas each reports its own numbers.
Histograms keep a bounded window of recent samples so a long-running
process does not grow without limit.
"""
from __future__ import annotations
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from threading import Lock

from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 10_000


def _percentile(sorted_values: list[float], p: float) -> float:
    return sorted_values[min(int(len(sorted_values) * p), len(sorted_values) - 1)]


def _summarize(samples: deque) -> dict:
    if not samples:
        return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

    values = sorted(samples)
    return {
        "count": len(values),
        "min": values[0],
        "max": values[-1],
        "avg": sum(values) / len(values),
        "p95": _percentile(values, 0.95),
        "p99": _percentile(values, 0.99),
    }


class MetricsCollector:
    """Thread-safe store of labelled counters and histogram samples."""

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, deque] = defaultdict(lambda: deque(maxlen=histogram_window))
        self._lock = Lock()

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """``name{k1=v1,k2=v2}`` with labels sorted, or just ``name``."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].append(value)

    def get_counter(self, name: str, labels: dict | None = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def get_metrics(self) -> dict:
        with self._lock:
            counters = dict(self._counters)
            histograms = {k: list(v) for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": {k: _summarize(deque(v)) for k, v in histograms.items()},
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class DispatchMetrics:
    """Named metrics for intake and slot transitions, so call sites never spell metric keys."""

    @staticmethod
    def complaint_dispatched(assigned_slots: int) -> None:
        inc_counter("complaints_dispatched_total")
        inc_counter("slots_assigned_total", assigned_slots)

    @staticmethod
    def slot_unassigned(category: str) -> None:
        inc_counter("slots_unassigned_total", category=category)

    @staticmethod
    def status_updated(category: str, status: str) -> None:
        inc_counter("slot_transitions_total", category=category, status=status)

    @staticmethod
    def status_rejected(reason: str) -> None:
        inc_counter("slot_transitions_rejected_total", reason=reason)

    @staticmethod
    def complaint_resolved() -> None:
        inc_counter("complaints_resolved_total")

    @staticmethod
    def notification_failed() -> None:
        inc_counter("volunteer_notifications_failed_total")

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    @contextmanager
    def track_matching_time():
        """Time the three directory queries and nearest-match passes of one intake"""
        start = time.perf_counter()
        try:
            yield
        finally:
            observe_histogram("dispatch_matching_seconds", time.perf_counter() - start)
