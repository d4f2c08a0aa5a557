"""
Metrics module for observability.

Provides counters, gauges, and histograms for tracking node supervision.
Exposes metrics in Prometheus text format.
"""

from .registry import (
    REGISTRY,
    environment_resources_created,
    generate_metrics,
    health_probes,
    lifecycle_events,
    node_healthy,
    readiness_wait_time,
    service_failures,
)

__all__ = [
    "REGISTRY",
    "environment_resources_created",
    "generate_metrics",
    "health_probes",
    "lifecycle_events",
    "node_healthy",
    "readiness_wait_time",
    "service_failures",
]
