"""Operator jobs on supervised nodes: restart, stop, status, health and logs."""

from .handlers import DEFAULT_LOG_LINES, NodeJobs
from .models import JobResult, NodeOverrides, RestartParams

__all__ = [
    "DEFAULT_LOG_LINES",
    "JobResult",
    "NodeJobs",
    "NodeOverrides",
    "RestartParams",
]
