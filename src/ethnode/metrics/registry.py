"""
Metric registry using prometheus_client.

Provides pre-defined metrics for node supervision.
Exposes metrics in Prometheus text format via the /metrics endpoint.
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a dedicated registry for ethnode metrics.
#
# Using a dedicated registry avoids pollution from default Python process metrics.
REGISTRY = CollectorRegistry()

# -----------------------------------------------------------------------------
# Node Health
# -----------------------------------------------------------------------------

node_healthy = Gauge(
    "ethnode_node_healthy",
    "Result of the most recent health probe (1 healthy, 0 unhealthy)",
    ["node"],
    registry=REGISTRY,
)

health_probes = Counter(
    "ethnode_health_probes_total",
    "Health probes performed",
    ["node", "result"],
    registry=REGISTRY,
)

readiness_wait_time = Histogram(
    "ethnode_readiness_wait_seconds",
    "Time from the first readiness probe until the node reported healthy",
    ["node"],
    buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------

lifecycle_events = Counter(
    "ethnode_lifecycle_events_total",
    "Container lifecycle transitions performed by the supervisor",
    ["node", "event"],
    registry=REGISTRY,
)

service_failures = Counter(
    "ethnode_service_failures_total",
    "Supervision tasks that ended with an error",
    ["node", "error"],
    registry=REGISTRY,
)

environment_resources_created = Counter(
    "ethnode_environment_resources_created_total",
    "Shared resources created by the environment initializer",
    ["kind"],
    registry=REGISTRY,
)


def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format output as bytes.
    """
    return generate_latest(REGISTRY)
