# shiftdesk/infra/metrics.py
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Track distribution of values (e.g., send latency)"""
    values: list[float] = field(default_factory=list)

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_values = sorted(self.values)
        count = len(sorted_values)

        def percentile(p: float) -> float:
            idx = int(count * p)
            return sorted_values[min(idx, count - 1)]

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p95": percentile(0.95),
        }


class MetricsCollector:
    """
    Lightweight in-process metrics collection.
    """

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter metric"""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        """Add a value to histogram"""
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        """Get all current metrics"""
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        """Reset all metrics"""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """Create a metric key from name and labels"""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    """Increment a counter metric"""
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    """Record a histogram value"""
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager to time operations"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.time() - self.start_time
            observe_histogram(self.metric_name, duration, **self.labels)


class AppMetrics:
    """Named counters for the scheduling flows"""

    @staticmethod
    def assignments_added(count: int) -> None:
        if count:
            inc_counter("assignments_added_total", count)

    @staticmethod
    def sms_sent(kind: str) -> None:
        inc_counter("sms_sent_total", kind=kind)

    @staticmethod
    def sms_failed(kind: str, error: str) -> None:
        inc_counter("sms_failed_total", kind=kind, error=error)

    @staticmethod
    def sms_skipped_unconfigured(kind: str) -> None:
        inc_counter("sms_skipped_unconfigured_total", kind=kind)

    @staticmethod
    def sms_aborted(kind: str, error: str) -> None:
        inc_counter("sms_aborted_total", kind=kind, error=error)

    @staticmethod
    def worker_provisioned(reactivated: bool) -> None:
        inc_counter("workers_provisioned_total", reactivated=str(reactivated).lower())

    @staticmethod
    def provisioning_rolled_back() -> None:
        inc_counter("provisioning_rollbacks_total")

    @staticmethod
    def provisioning_rollback_failed() -> None:
        inc_counter("provisioning_rollback_failures_total")

    @staticmethod
    def weak_password_generated() -> None:
        inc_counter("passwords_generated_degraded_total")

    @staticmethod
    def invite_delivery(mechanism: str, ok: bool) -> None:
        inc_counter("invite_delivery_total", mechanism=mechanism, ok=str(ok).lower())

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def webhook_validation_failed(provider: str) -> None:
        inc_counter("webhook_validation_failures_total", provider=provider)

    @staticmethod
    def track_dispatch_time(kind: str) -> Timer:
        return Timer("sms_dispatch_seconds", kind=kind)
