"""
Background supervision of one node.

A NodeService runs a node's whole lifecycle as one asyncio task:

    initialize -> start_container -> wait_for_healthy -> monitor_health

The caller gets a completion future back. It resolves exactly once: with
None when supervision was stopped, or with the exception that ended it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ethnode.node import NodeLifecycleManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NodeService:
    """Runs one node's lifecycle in the background."""

    manager: NodeLifecycleManager
    """Manager of the supervised node."""

    _stop: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    """Set to end supervision."""

    _task: asyncio.Task[None] | None = field(default=None, init=False)
    """Task running the lifecycle."""

    _completion: asyncio.Future[None] | None = field(default=None, init=False)
    """Completion of the current run."""

    @property
    def name(self) -> str:
        """Name of the supervised node."""
        return self.manager.name

    @property
    def completion(self) -> asyncio.Future[None] | None:
        """Completion of the current or most recent run."""
        return self._completion

    @property
    def is_running(self) -> bool:
        """Whether a run is in progress."""
        return self._completion is not None and not self._completion.done()

    def start(self) -> asyncio.Future[None]:
        """
        Start supervision in the background.

        Returns:
            The completion of the run. Starting again while a run is in
            progress returns the same completion.
        """
        if self._completion is not None and not self._completion.done():
            return self._completion

        self._stop = asyncio.Event()
        completion: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._completion = completion
        self._task = asyncio.create_task(self._run(completion), name=f"node:{self.name}")
        return completion

    def stop(self) -> None:
        """Request the end of supervision. The completion resolves with None."""
        self._stop.set()

    async def cancel(self) -> None:
        """Cancel the run outright and wait for it to unwind."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        # A task cancelled before its first step never reaches _run.
        if self._completion is not None and not self._completion.done():
            self._completion.cancel()

    async def _run(self, completion: asyncio.Future[None]) -> None:
        manager = self.manager
        try:
            await manager.initialize()
            await manager.start_container()
            await manager.wait_for_healthy()
            await manager.monitor_health(self._stop)
        except asyncio.CancelledError:
            if not completion.done():
                completion.cancel()
            raise
        except Exception as exc:
            if completion.done():
                return
            # Stopping the container under a running probe makes it fail.
            # That is the stop taking effect, not a node failure.
            if self._stop.is_set():
                logger.debug("%s: ignoring %r raised after stop", self.name, exc)
                completion.set_result(None)
                return
            logger.error("%s: supervision failed: %s", self.name, exc)
            completion.set_exception(exc)
        else:
            if not completion.done():
                completion.set_result(None)
