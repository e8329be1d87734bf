"""Prometheus metrics for store traffic and fan-out health.

All metrics live on a private ``CollectorRegistry`` so importing SocialTree
never pollutes the process-wide default registry.

Metric Types:
    Counters:
        - store_operations_total: Store calls by operation and outcome
        - counter_increments_total: Counter updates by field and mode
        - notifications_created_total: Notification records written by type
        - fanout_failures_total: Best-effort secondary writes that were skipped

    Gauges:
        - active_subscriptions: Live store subscriptions

    Histograms:
        - store_operation_duration_seconds: Store call latency
        - upload_size_bytes: Size of uploaded blobs

Usage:
    ```python
    from socialtree.metrics import generate_metrics_output

    body = generate_metrics_output()  # Prometheus text exposition format
    ```
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

registry = CollectorRegistry()

# Covers in-process stores (sub-millisecond) up to slow remote round trips
STORE_LATENCY_BUCKETS = (
    0.0005,
    0.001,
    0.005,
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
)

# ========== COUNTER METRICS ==========

store_operations_total = Counter(
    "store_operations_total",
    "Total number of store operations",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Store calls by operation and outcome.

Labels:
    operation: get, set, merge, transaction
    status: success or error
"""

counter_increments_total = Counter(
    "counter_increments_total",
    "Total number of denormalized counter increments",
    labelnames=["field", "mode"],
    registry=registry,
)
"""Counter updates.

Labels:
    field: Counter field (likes, shares, comments, count, connections)
    mode: rmw (read-modify-write) or atomic (store transaction)
"""

notifications_created_total = Counter(
    "notifications_created_total",
    "Total number of notification records written",
    labelnames=["type"],
    registry=registry,
)

fanout_failures_total = Counter(
    "fanout_failures_total",
    "Best-effort secondary writes that failed and were skipped",
    labelnames=["step"],
    registry=registry,
)
"""Failed secondary writes.

Labels:
    step: tag_upsert, group_index, notification, connection_counter, ...

Example:
    ```python
    fanout_failures_total.labels(step="tag_upsert").inc()
    ```
"""

# ========== GAUGE METRICS ==========

active_subscriptions = Gauge(
    "active_subscriptions",
    "Current number of live store subscriptions",
    registry=registry,
)

# ========== HISTOGRAM METRICS ==========

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Duration of store operations in seconds",
    labelnames=["operation"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=registry,
)

upload_size_bytes = Histogram(
    "upload_size_bytes",
    "Size of uploaded blobs in bytes",
    labelnames=["backend"],
    buckets=(1_000, 10_000, 100_000, 500_000, 1_000_000, 5_000_000, 20_000_000),
    registry=registry,
)

# ========== HELPER FUNCTIONS ==========

def generate_metrics_output() -> bytes:
    """Render all metrics in Prometheus exposition format.

    Returns:
        Metrics output as bytes (suitable for an HTTP response body)
    """
    return generate_latest(registry)

def sample_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Read the current value of one sample, 0.0 if it was never recorded.

    Args:
        name: Sample name (for counters, including the ``_total`` suffix)
        labels: Label values identifying the series

    Example:
        ```python
        sample_value("fanout_failures_total", {"step": "tag_upsert"})
        ```
    """
    value = registry.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


__all__ = [
    "registry",
    "store_operations_total",
    "counter_increments_total",
    "notifications_created_total",
    "fanout_failures_total",
    "active_subscriptions",
    "store_operation_duration_seconds",
    "upload_size_bytes",
    "generate_metrics_output",
    "sample_value",
    "STORE_LATENCY_BUCKETS",
]
