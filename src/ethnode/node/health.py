"""
Health verdicts for supervised nodes.

A verdict is derived fresh on every probe from three signals:

1. Container state: running, exit code, OOM kill, engine error
2. Recent logs: any line containing an error marker
3. Client readiness: a literal log marker and/or an HTTP endpoint

Nothing is persisted between probes except the most recent verdict.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final

from ethnode.config import ETHNODE_ENV
from ethnode.engine import ContainerState, LogLine

DEFAULT_LOG_TAIL: Final = 50
"""Number of recent log lines scanned per probe."""


@dataclass(frozen=True, slots=True)
class HealthState:
    """Outcome of one health probe."""

    healthy: bool
    """Whether every signal was positive."""

    reason: str | None = None
    """Why the probe failed. None when healthy."""

    @classmethod
    def ok(cls) -> HealthState:
        """A healthy verdict."""
        return cls(healthy=True)

    @classmethod
    def unhealthy(cls, reason: str) -> HealthState:
        """An unhealthy verdict with its reason."""
        return cls(healthy=False, reason=reason)

    def __str__(self) -> str:
        return "healthy" if self.healthy else f"unhealthy ({self.reason})"


@dataclass(frozen=True, slots=True)
class HealthPolicy:
    """
    Timing of readiness waits and supervision.

    The readiness wait is bounded by retry_interval * max_retries.
    The supervision loop has no bound; it ends on failure or stop.
    """

    retry_interval: float = 1.0
    """Seconds between readiness probes."""

    max_retries: int = 30
    """Readiness probes before giving up."""

    monitor_interval: float = 30.0
    """Seconds between supervision probes."""

    log_tail: int = DEFAULT_LOG_TAIL
    """Recent log lines scanned per probe."""

    probe_timeout: float = 5.0
    """Seconds allowed for the readiness endpoint to answer."""

    def __post_init__(self) -> None:
        if self.retry_interval < 0 or self.monitor_interval <= 0:
            raise ValueError("Health intervals must be positive.")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1.")
        if self.log_tail < 1:
            raise ValueError("log_tail must be >= 1.")

    @classmethod
    def default(cls) -> HealthPolicy:
        """Production timing, or fast timing when ETHNODE_ENV is 'test'."""
        if ETHNODE_ENV == "test":
            return cls(retry_interval=0.01, max_retries=5, monitor_interval=0.05)
        return cls()


def evaluate_state(state: ContainerState | None) -> HealthState:
    """
    Judge a container from its engine-reported state.

    Checks run in a fixed order so the reason names the most specific cause.
    """
    if state is None:
        return HealthState.unhealthy("no state information")
    if state.oom_killed:
        return HealthState.unhealthy("oom_killed")
    if state.error:
        return HealthState.unhealthy(f"error={state.error}")
    if state.exit_code != 0:
        return HealthState.unhealthy(f"exit_code={state.exit_code}")
    if not state.running:
        return HealthState.unhealthy("not running")
    return HealthState.ok()


def scan_logs(lines: Iterable[LogLine], markers: Iterable[str]) -> HealthState:
    """
    Look for error markers in decoded log lines.

    Matching is a plain substring test per marker. Both output streams are
    treated alike. The first offending line becomes the reason.
    """
    markers = tuple(markers)
    for line in lines:
        if any(marker in line.message for marker in markers):
            return HealthState.unhealthy(f"log error: {line.message}")
    return HealthState.ok()


def contains_marker(lines: Iterable[LogLine], marker: str) -> bool:
    """Check whether any line carries the readiness marker."""
    return any(marker in line.message for line in lines)
