"""
Jobs: operator actions on one supervised node.

Expected failures (engine errors, a node that never gets ready, a bad
config) come back as JobResult(success=False). Anything else propagates.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from ethnode.service import NodeService
from ethnode.types import ContainerError, EngineError, NodeUnresponsiveError

from .models import JobResult, NodeOverrides, RestartParams

logger = logging.getLogger(__name__)

DEFAULT_LOG_LINES: Final = 100
"""Lines returned by the logs job when no tail is given."""


def _noop() -> None:
    """Default restart hook that does nothing."""


@dataclass(slots=True)
class NodeJobs:
    """Job handlers bound to one node service."""

    service: NodeService
    """Service of the node the jobs act on."""

    on_restart: Callable[[], None] = _noop
    """Called after the restart job started supervision again."""

    async def restart(self, params: RestartParams | None = None) -> JobResult:
        """
        Restart the node, optionally with a wiped data volume or a new config.

        Order: stop, then clear or remove, reconfigure, initialize, start,
        wait until ready. Supervision probes are suspended meanwhile.
        """
        params = params or RestartParams()
        manager = self.service.manager

        # Validate the new descriptor before touching the container.
        new_config = None
        if params.new_config is not None:
            try:
                overrides = NodeOverrides.parse(params.new_config)
                new_config = dataclasses.replace(manager.config, **overrides.changes())
            except ValueError as exc:
                return JobResult(success=False, message=f"Invalid new_config: {exc}")

        logger.info(
            "%s: restarting (clear_cache=%s, new_config=%s)",
            manager.name,
            params.clear_cache,
            new_config is not None,
        )

        async with manager.suspend_monitoring():
            try:
                await manager.stop()
                if params.clear_cache:
                    await manager.cleanup()
                elif new_config is not None:
                    await manager.remove()
                if new_config is not None:
                    await manager.reconfigure(new_config)
                await manager.initialize()
                await manager.start_container()
                await manager.wait_for_healthy()
            except (EngineError, ContainerError, NodeUnresponsiveError) as exc:
                logger.error("%s: restart failed: %s", manager.name, exc)
                return JobResult(success=False, message=str(exc), data=manager.status())

        if not self.service.is_running:
            self.service.start()
            self.on_restart()

        return JobResult(
            success=True, message=f"{manager.name} restarted", data=manager.status()
        )

    async def stop(self) -> JobResult:
        """End supervision and stop the container, keeping it for a restart."""
        manager = self.service.manager
        self.service.stop()
        try:
            await manager.stop()
        except EngineError as exc:
            return JobResult(success=False, message=str(exc), data=manager.status())
        return JobResult(success=True, message=f"{manager.name} stopped", data=manager.status())

    async def status(self) -> JobResult:
        """Report lifecycle state and the last health verdict."""
        manager = self.service.manager
        data = manager.status() | {"supervised": self.service.is_running}
        return JobResult(success=True, message=manager.state.value, data=data)

    async def health(self) -> JobResult:
        """Probe the node now."""
        manager = self.service.manager
        try:
            verdict = await manager.check_health()
        except EngineError as exc:
            return JobResult(success=False, message=str(exc))
        return JobResult(
            success=verdict.healthy,
            message=str(verdict),
            data={"healthy": verdict.healthy, "reason": verdict.reason},
        )

    async def logs(self, tail: int | None = DEFAULT_LOG_LINES) -> JobResult:
        """Fetch recent log lines."""
        manager = self.service.manager
        try:
            lines = await manager.logs(tail)
        except (EngineError, ContainerError) as exc:
            return JobResult(success=False, message=str(exc))
        return JobResult(
            success=True,
            message=f"{len(lines)} line(s)",
            data={"lines": [str(line) for line in lines]},
        )
