"""Prometheus-style metrics collector for the audit chain. Thread-safe, in-memory."""

import threading
from typing import Any

# Metric names
AUDIT_EVENTS_APPENDED = "audit_events_appended_total"
AUDIT_APPEND_CONFLICTS = "audit_append_conflicts_total"
AUDIT_APPEND_FAILURES = "audit_append_failures_total"
AUDIT_FAIL_OPEN_PASSTHROUGH = "audit_fail_open_passthrough_total"
AUDIT_DIGESTS_GENERATED = "audit_digests_generated_total"
INTEGRITY_VERIFICATIONS = "integrity_verifications_total"
AUDIT_APPEND_LATENCY = "audit_append_latency_ms"
INTEGRITY_VERIFY_LATENCY = "integrity_verify_latency_ms"


class MetricsCollector:
    """
    In-memory Prometheus-style registry. Tracks counters and histograms.
    Thread-safe. Exposes increment, observe_latency, export_metrics.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_labels: dict[str, dict[str, float]] = {}
        self._histograms: dict[str, list[float]] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        category: str | None = None,
    ) -> None:
        """Increment a counter. Optional category (e.g. action, outcome) for dimensional metrics."""
        with self._lock:
            if category is not None:
                key = f"{name}:category={category}"
                by_label = self._counters_by_labels.setdefault(name, {})
                by_label[key] = by_label.get(key, 0) + value
            else:
                self._counters[name] = self._counters.get(name, 0) + value

    def observe_latency(self, name: str, latency_ms: float) -> None:
        """Record a latency observation (histogram-style)."""
        with self._lock:
            self._histograms.setdefault(name, []).append(latency_ms)

    def get_counter(self, name: str, *, category: str | None = None) -> float:
        with self._lock:
            if category is not None:
                return self._counters_by_labels.get(name, {}).get(f"{name}:category={category}", 0)
            return self._counters.get(name, 0)

    def export_metrics(self) -> dict[str, Any]:
        """Export all metrics as a dict (simulated Prometheus-style)."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_labels": {
                    k: dict(v) for k, v in self._counters_by_labels.items()
                },
                "histograms": {
                    k: {
                        "count": len(v),
                        "sum": sum(v),
                    }
                    for k, v in self._histograms.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_labels.clear()
            self._histograms.clear()
