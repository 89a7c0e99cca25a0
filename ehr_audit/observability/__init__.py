"""Observability layer: in-memory metrics. No external SaaS."""

from ehr_audit.observability.metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
]
