"""
Node lifecycle manager.

One manager supervises one client container. It is generic: everything that
distinguishes reth from lighthouse lives in the NodeConfig it is given.

Lifecycle
---------
::

    UNINITIALIZED -> CREATED -> STARTED -> HEALTHY <-> UNHEALTHY
                                               |
                                            STOPPED -> REMOVED

REMOVED requires a fresh initialize().

The container id is the only mutable state shared between operations.
Operations that change the container hold the lock for their whole duration.
Read-only operations take a snapshot of the id under the lock and then work
without it, so a slow log fetch never blocks a stop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ethnode.config import STOP_TIMEOUT
from ethnode.engine import ContainerEngine, LogLine
from ethnode.environment.resources import ensure_volume, remove_volume
from ethnode.metrics import health_probes, lifecycle_events, node_healthy, readiness_wait_time
from ethnode.types import (
    ContainerError,
    EngineError,
    NodeUnhealthyError,
    NodeUnresponsiveError,
    ResourceConflictError,
    ResourceNotFoundError,
)

from .config import NodeConfig
from .health import HealthPolicy, HealthState, contains_marker, evaluate_state, scan_logs
from .spec import build_container_spec

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    """Lifecycle position of a supervised node, kept for status reporting."""

    UNINITIALIZED = "uninitialized"
    CREATED = "created"
    STARTED = "started"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"
    REMOVED = "removed"


@dataclass(slots=True)
class NodeLifecycleManager:
    """
    Supervises one client container through its lifecycle.

    The engine is shared with every other node and is never closed here.
    """

    engine: ContainerEngine
    """Container engine. Shared, not owned."""

    config: NodeConfig
    """Node descriptor. Replaced only through reconfigure()."""

    policy: HealthPolicy = field(default_factory=HealthPolicy.default)
    """Readiness and supervision timing."""

    stop_timeout: int = STOP_TIMEOUT
    """Seconds the engine waits for a graceful exit on stop."""

    transport: httpx.AsyncBaseTransport | None = None
    """Transport for readiness endpoint requests. Tests pass a mock here."""

    _container_id: str | None = field(default=None, init=False)
    """Id of the container this node owns. Set by create, cleared by remove."""

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    """Serializes container-mutating operations."""

    _state: NodeState = field(default=NodeState.UNINITIALIZED, init=False)
    """Current lifecycle position."""

    _last_health: HealthState | None = field(default=None, init=False)
    """Verdict of the most recent probe."""

    _suspended: int = field(default=0, init=False)
    """Nesting depth of suspend_monitoring()."""

    _monitor_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    """Held by a supervision probe; suspension waits for it."""

    @property
    def name(self) -> str:
        """Node name, used as the container name and log label."""
        return self.config.name

    @property
    def container_id(self) -> str | None:
        """Id of the owned container, if any."""
        return self._container_id

    @property
    def state(self) -> NodeState:
        """Current lifecycle position."""
        return self._state

    @property
    def last_health(self) -> HealthState | None:
        """Verdict of the most recent probe."""
        return self._last_health

    def _transition(self, state: NodeState) -> None:
        if state is self._state:
            return
        logger.debug("%s: %s -> %s", self.name, self._state.value, state.value)
        self._state = state
        lifecycle_events.labels(node=self.name, event=state.value).inc()

    async def _snapshot_id(self) -> str | None:
        async with self._lock:
            return self._container_id

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def ensure_image(self) -> bool:
        """
        Pull the node's image unless the engine already has it.

        Returns:
            True if the image was pulled.
        """
        if await self.engine.image_exists(self.config.image):
            return False
        logger.info("%s: pulling image %s", self.name, self.config.image)
        await self.engine.pull_image(self.config.image)
        return True

    async def initialize(self) -> str:
        """
        Create the node's container unless one already exists.

        Idempotent: a second call returns the existing id without touching
        the engine.

        A stale container with the same name, left by an earlier run, is
        removed and the create retried once.

        Returns:
            The container id.
        """
        async with self._lock:
            if self._container_id is not None:
                return self._container_id

            await self.ensure_image()
            if self.config.data_volume is not None:
                await ensure_volume(self.engine, self.config.data_volume)

            spec = build_container_spec(self.config)
            try:
                container_id = await self.engine.create_container(spec)
            except ResourceConflictError:
                logger.warning("%s: removing stale container with the same name", self.name)
                try:
                    await self.engine.remove_container(self.name, force=True)
                except ResourceNotFoundError:
                    pass
                container_id = await self.engine.create_container(spec)

            self._container_id = container_id
            self._transition(NodeState.CREATED)
            logger.info("%s: created container %s", self.name, container_id[:12])
            return container_id

    async def start_container(self) -> None:
        """Start the owned container. Without one this only warns."""
        async with self._lock:
            if self._container_id is None:
                logger.warning("%s: no container to start", self.name)
                return
            await self.engine.start_container(self._container_id)
            self._transition(NodeState.STARTED)
            logger.info("%s: started container %s", self.name, self._container_id[:12])

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def check_health(self, *, require_ready: bool = False) -> HealthState:
        """
        Probe the node once.

        Never moves the lifecycle backwards or forwards except between
        HEALTHY and UNHEALTHY.

        Args:
            require_ready: Also require the readiness marker in recent logs.

        Returns:
            The verdict, also kept as last_health.
        """
        verdict = await self._probe(require_ready)

        self._last_health = verdict
        health_probes.labels(
            node=self.name, result="healthy" if verdict.healthy else "unhealthy"
        ).inc()
        node_healthy.labels(node=self.name).set(1 if verdict.healthy else 0)

        if self._state in (NodeState.STARTED, NodeState.HEALTHY, NodeState.UNHEALTHY):
            self._transition(NodeState.HEALTHY if verdict.healthy else NodeState.UNHEALTHY)
        return verdict

    async def _probe(self, require_ready: bool) -> HealthState:
        container_id = await self._snapshot_id()
        if container_id is None:
            return HealthState.unhealthy("no container")

        try:
            state = await self.engine.inspect_container(container_id)
        except ResourceNotFoundError:
            return HealthState.unhealthy("container not found")

        verdict = evaluate_state(state)
        if not verdict.healthy:
            return verdict

        try:
            lines = await self.engine.container_logs(container_id, tail=self.policy.log_tail)
        except EngineError as exc:
            return HealthState.unhealthy(f"log read failed: {exc.detail}")

        for line in lines:
            logger.debug("[%s] %s", self.name, line.message)

        verdict = scan_logs(lines, self.config.error_markers)
        if not verdict.healthy:
            return verdict

        if self.config.readiness_url is not None:
            verdict = await self._probe_endpoint(self.config.readiness_url)
            if not verdict.healthy:
                return verdict

        marker = self.config.readiness_marker
        if require_ready and marker is not None and not contains_marker(lines, marker):
            return HealthState.unhealthy(f"readiness marker {marker!r} not seen")

        return HealthState.ok()

    async def _probe_endpoint(self, url: str) -> HealthState:
        try:
            async with httpx.AsyncClient(
                timeout=self.policy.probe_timeout, transport=self.transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            return HealthState.unhealthy(f"readiness endpoint unreachable: {exc!r}")
        if not response.is_success:
            return HealthState.unhealthy(f"readiness endpoint returned {response.status_code}")
        return HealthState.ok()

    async def wait_for_healthy(self) -> HealthState:
        """
        Probe until the node is ready or the retry budget runs out.

        The wait is bounded by retry_interval * max_retries.

        Raises:
            NodeUnresponsiveError: If no probe succeeded.
        """
        started = time.monotonic()
        verdict = HealthState.unhealthy("not probed")

        for attempt in range(1, self.policy.max_retries + 1):
            verdict = await self.check_health(require_ready=True)
            if verdict.healthy:
                readiness_wait_time.labels(node=self.name).observe(time.monotonic() - started)
                logger.info("%s: healthy after %d probe(s)", self.name, attempt)
                return verdict

            logger.debug("%s: not ready (%s), attempt %d", self.name, verdict.reason, attempt)
            # No point sleeping after the final probe.
            if attempt < self.policy.max_retries:
                await asyncio.sleep(self.policy.retry_interval)

        raise NodeUnresponsiveError(self.name, self.policy.max_retries, verdict.reason)

    async def monitor_health(self, stop: asyncio.Event) -> None:
        """
        Probe periodically until the node fails or stop is set.

        Probes run immediately and then every monitor_interval. The wait
        between probes is on the stop event, so a stop takes effect at once.

        Raises:
            NodeUnhealthyError: On the first unhealthy probe.
        """
        logger.info("%s: supervising every %.1fs", self.name, self.policy.monitor_interval)
        while not stop.is_set():
            async with self._monitor_lock:
                if self._suspended:
                    logger.debug("%s: supervision suspended, skipping probe", self.name)
                else:
                    verdict = await self.check_health()
                    if not verdict.healthy:
                        logger.error("%s: unhealthy: %s", self.name, verdict.reason)
                        raise NodeUnhealthyError(self.name, verdict.reason)

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.policy.monitor_interval)
            except TimeoutError:
                continue

        logger.info("%s: supervision stopped", self.name)

    @asynccontextmanager
    async def suspend_monitoring(self) -> AsyncIterator[None]:
        """
        Skip supervision probes while the block runs, e.g. during a restart.

        Entering waits for a probe already in flight, so the block never
        changes the container under it.
        """
        self._suspended += 1
        try:
            async with self._monitor_lock:
                pass
            yield
        finally:
            self._suspended -= 1

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Stop the owned container, keeping it for a later start.

        Best effort: without a container, or if the engine no longer knows
        it, this only logs.
        """
        async with self._lock:
            if self._container_id is None:
                logger.debug("%s: no container to stop", self.name)
                return
            try:
                await self.engine.stop_container(self._container_id, timeout=self.stop_timeout)
            except ResourceNotFoundError:
                logger.warning("%s: container %s already gone", self.name, self._container_id[:12])
            self._transition(NodeState.STOPPED)
            logger.info("%s: stopped", self.name)

    async def remove(self) -> None:
        """Force-remove the owned container and forget its id."""
        async with self._lock:
            await self._remove_locked()

    async def _remove_locked(self) -> None:
        if self._container_id is None:
            return
        try:
            await self.engine.remove_container(self._container_id, force=True)
        except ResourceNotFoundError:
            logger.debug("%s: container %s already removed", self.name, self._container_id[:12])
        logger.info("%s: removed container %s", self.name, self._container_id[:12])
        self._container_id = None
        self._transition(NodeState.REMOVED)

    async def cleanup(self) -> None:
        """
        Remove the container and the node's exclusive data volume.

        Shared resources (network, secret volume) are left alone.
        """
        async with self._lock:
            await self._remove_locked()
            if self.config.data_volume is not None:
                await remove_volume(self.engine, self.config.data_volume.name)
            self._transition(NodeState.REMOVED)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    async def logs(self, tail: int | None = None) -> list[LogLine]:
        """
        Recent log lines from both streams, oldest first.

        Raises:
            ContainerError: If the node owns no container.
        """
        container_id = await self._snapshot_id()
        if container_id is None:
            raise ContainerError(f"{self.name} has no container")
        return await self.engine.container_logs(container_id, tail=tail)

    async def follow_logs(self) -> AsyncIterator[LogLine]:
        """
        Stream log lines as the container writes them.

        Raises:
            ContainerError: If the node owns no container.
        """
        container_id = await self._snapshot_id()
        if container_id is None:
            raise ContainerError(f"{self.name} has no container")
        async for line in self.engine.follow_logs(container_id):
            yield line

    async def reconfigure(self, config: NodeConfig | None = None, **changes: Any) -> NodeConfig:
        """
        Replace the node descriptor.

        Takes a full descriptor or field changes applied to the current one.
        The name cannot change; it identifies the node.

        Raises:
            ContainerError: If the node still owns a container.
        """
        async with self._lock:
            if self._container_id is not None:
                raise ContainerError(f"{self.name} must be removed before reconfiguring")
            new = config if config is not None else dataclasses.replace(self.config, **changes)
            if new.name != self.config.name:
                raise ValueError(f"Cannot rename node {self.config.name} to {new.name}")
            self.config = new
            self._transition(NodeState.UNINITIALIZED)
            logger.info("%s: reconfigured (image=%s)", self.name, new.image)
            return new

    def status(self) -> dict[str, Any]:
        """Snapshot for status reporting."""
        health = self._last_health
        return {
            "name": self.name,
            "image": self.config.image,
            "state": self._state.value,
            "container_id": self._container_id,
            "healthy": None if health is None else health.healthy,
            "reason": None if health is None else health.reason,
        }
