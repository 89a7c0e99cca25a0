"""MetricsCollector tests: counters, categories, histogram, reset, thread safety."""

import threading

from ehr_audit.observability.metrics import (
    AUDIT_APPEND_FAILURES,
    AUDIT_APPEND_LATENCY,
    AUDIT_EVENTS_APPENDED,
    MetricsCollector,
)


def test_metrics_counter_increment():
    m = MetricsCollector()
    m.increment(AUDIT_APPEND_FAILURES)
    m.increment(AUDIT_APPEND_FAILURES, 2)
    out = m.export_metrics()
    assert out["counters"][AUDIT_APPEND_FAILURES] == 3
    assert m.get_counter(AUDIT_APPEND_FAILURES) == 3


def test_metrics_histogram_tracks_latency():
    m = MetricsCollector()
    m.observe_latency(AUDIT_APPEND_LATENCY, 10.5)
    m.observe_latency(AUDIT_APPEND_LATENCY, 20.0)
    h = m.export_metrics()["histograms"][AUDIT_APPEND_LATENCY]
    assert h["count"] == 2
    assert h["sum"] == 30.5


def test_metrics_counts_by_category():
    m = MetricsCollector()
    m.increment(AUDIT_EVENTS_APPENDED, category="READ")
    m.increment(AUDIT_EVENTS_APPENDED, category="READ")
    m.increment(AUDIT_EVENTS_APPENDED, category="UPDATE")
    labels = m.export_metrics()["counters_by_labels"][AUDIT_EVENTS_APPENDED]
    assert sum(labels.values()) == 3
    assert m.get_counter(AUDIT_EVENTS_APPENDED, category="READ") == 2
    assert m.get_counter(AUDIT_EVENTS_APPENDED, category="DELETE") == 0


def test_metrics_reset_clears_everything():
    m = MetricsCollector()
    m.increment(AUDIT_APPEND_FAILURES)
    m.observe_latency(AUDIT_APPEND_LATENCY, 1.0)
    m.reset()
    out = m.export_metrics()
    assert out == {"counters": {}, "counters_by_labels": {}, "histograms": {}}


def test_metrics_thread_safe_increments():
    m = MetricsCollector()

    def work():
        for _ in range(1000):
            m.increment(AUDIT_EVENTS_APPENDED, category="READ")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert m.get_counter(AUDIT_EVENTS_APPENDED, category="READ") == 4000
