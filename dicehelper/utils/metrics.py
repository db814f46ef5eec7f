"""
Basic in-memory metrics counters for the helper worker.

- cycles_total / cycle_failures_total: poll cycles run and rolled back
- rows_*_total: per-row outcomes
- write_anomalies_total: result updates that matched no row
- claims_lost_total: claimed rows skipped because another worker finalized them
- ticks_skipped_total: scheduler ticks dropped by the single-flight guard
- cycle_duration_seconds: histogram of cycle wall time
"""
from collections import defaultdict
from typing import Any
import logging

logger = logging.getLogger("dicehelper.metrics")


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        """Increment a counter metric."""
        key = self._build_key(name, labels)
        self.counters[key] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        """Record a histogram observation."""
        key = self._build_key(name, labels)
        self.histograms[key].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        key = self._build_key(name, labels)
        return self.counters.get(key, 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Get histogram statistics (count, sum, min, max, avg)."""
        key = self._build_key(name, labels)
        values = self.histograms.get(key, [])
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        n = len(values)
        return {
            "count": n,
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / n,
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms.keys()},
        }

    def reset(self):
        self.counters.clear()
        self.histograms.clear()

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        """Build metric key from name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector instance
metrics = MetricsCollector()


def record_cycle(mode: str, duration_seconds: float, failed: bool):
    """Record one finished poll cycle."""
    metrics.increment_counter("cycles_total", labels={"mode": mode})
    metrics.observe_histogram("cycle_duration_seconds", duration_seconds, labels={"mode": mode})
    if failed:
        metrics.increment_counter("cycle_failures_total")


def record_rows_claimed(count: int):
    if count:
        metrics.increment_counter("rows_claimed_total", value=count)


def record_row_outcome(status: str):
    """Record a row finalized as ``completed`` or ``error``."""
    metrics.increment_counter(f"rows_{status}_total")


def record_rows_released(count: int):
    if count:
        metrics.increment_counter("rows_released_total", value=count)


def record_stale_claims(count: int):
    if count:
        metrics.increment_counter("stale_claims_total", value=count)


def record_claims_lost(count: int):
    if count:
        metrics.increment_counter("claims_lost_total", value=count)


def record_write_anomaly(request_id: int):
    metrics.increment_counter("write_anomalies_total")
    logger.debug("Write anomaly recorded for request %s", request_id)


def record_tick_skipped():
    metrics.increment_counter("ticks_skipped_total")


def get_metrics_summary() -> dict:
    """Get a summary of all metrics."""
    return metrics.get_all_metrics()
