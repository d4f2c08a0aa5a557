"""
Supervisor for every node of a deployment.

Wires the shared environment and the node services together:

1. Provision the shared environment, before any node exists
2. Start one NodeService per node
3. React to whichever service completes first
4. On shutdown, stop every service and clean up its container
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterable
from dataclasses import dataclass, field

from ethnode.engine import ContainerEngine
from ethnode.environment import EnvironmentInitializer
from ethnode.metrics import service_failures
from ethnode.node import HealthPolicy, NodeConfig, NodeLifecycleManager
from ethnode.types import EngineError

from .background import NodeService

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 15.0
"""Seconds services get to finish after a stop request before being cancelled."""


@dataclass(slots=True)
class Supervisor:
    """
    Runs every node of a deployment until shutdown.

    A node failure is logged and counted. By default it also shuts the whole
    deployment down, since a consensus client without its execution client
    (or the reverse) is of no use.
    """

    environment: EnvironmentInitializer
    """Provisions the shared network, volumes and secret."""

    services: dict[str, NodeService] = field(default_factory=dict)
    """Node services by node name."""

    keep_data: bool = False
    """Only stop containers on shutdown, keeping them and their data volumes."""

    exit_on_failure: bool = True
    """Shut down when any node fails."""

    _shutdown: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _changed: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _handled: set[asyncio.Future[None]] = field(default_factory=set, init=False)
    _failures: dict[str, BaseException] = field(default_factory=dict, init=False)

    @classmethod
    def from_configs(
        cls,
        engine: ContainerEngine,
        environment: EnvironmentInitializer,
        configs: Iterable[NodeConfig],
        *,
        policy: HealthPolicy | None = None,
        keep_data: bool = False,
        exit_on_failure: bool = True,
    ) -> Supervisor:
        """
        Build a supervisor with one service per node descriptor.

        Raises:
            ValueError: If two descriptors share a name.
        """
        services: dict[str, NodeService] = {}
        for config in configs:
            if config.name in services:
                raise ValueError(f"Duplicate node name {config.name!r}")
            manager = NodeLifecycleManager(
                engine=engine,
                config=config,
                policy=policy or HealthPolicy.default(),
            )
            services[config.name] = NodeService(manager)
        return cls(
            environment=environment,
            services=services,
            keep_data=keep_data,
            exit_on_failure=exit_on_failure,
        )

    @property
    def failures(self) -> dict[str, BaseException]:
        """Errors that ended node supervision, by node name."""
        return dict(self._failures)

    @property
    def is_running(self) -> bool:
        """Whether shutdown has not been requested yet."""
        return not self._shutdown.is_set()

    def service(self, name: str) -> NodeService | None:
        """Look up the service of a node."""
        return self.services.get(name)

    def notify(self) -> None:
        """Tell the supervisor a service was started again."""
        self._changed.set()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown.set()

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        """
        Supervise every node until shutdown.

        Args:
            install_signal_handlers: Whether to handle SIGINT/SIGTERM.
                Disable for testing or non-main threads.
        """
        if install_signal_handlers:
            self._install_signal_handlers()

        try:
            await self.environment.initialize_environment()
            for service in self.services.values():
                service.start()
            logger.info("Supervising %d node(s): %s", len(self.services), ", ".join(self.services))
            await self._watch()
        finally:
            await self._shutdown_services()

    def _install_signal_handlers(self) -> None:
        """Install SIGINT/SIGTERM handlers that request shutdown."""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request_shutdown)
        except (ValueError, RuntimeError, NotImplementedError):
            # Cannot add handlers outside the main thread.
            pass

    async def _watch(self) -> None:
        while not self._shutdown.is_set():
            self._changed.clear()
            pending = {
                service.completion: name
                for name, service in self.services.items()
                if service.completion is not None and service.completion not in self._handled
            }

            shutdown = asyncio.ensure_future(self._shutdown.wait())
            changed = asyncio.ensure_future(self._changed.wait())
            try:
                done, _ = await asyncio.wait(
                    [*pending, shutdown, changed], return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                shutdown.cancel()
                changed.cancel()

            for completion in done:
                if completion in pending:
                    self._handle_completion(pending[completion], completion)

    def _handle_completion(self, name: str, completion: asyncio.Future[None]) -> None:
        self._handled.add(completion)

        if completion.cancelled():
            logger.info("%s: supervision cancelled", name)
            return

        exc = completion.exception()
        if exc is None:
            logger.info("%s: supervision ended", name)
            return

        self._failures[name] = exc
        service_failures.labels(node=name, error=type(exc).__name__).inc()
        logger.error("%s: node failed: %s", name, exc)

        if self.exit_on_failure:
            logger.warning("Shutting down after failure of %s", name)
            self._shutdown.set()

    async def _shutdown_services(self) -> None:
        logger.info("Shutting down %d node(s)", len(self.services))

        for service in self.services.values():
            service.stop()

        running = [s.completion for s in self.services.values() if s.is_running]
        if running:
            await asyncio.wait(running, timeout=SHUTDOWN_GRACE)
        for service in self.services.values():
            await service.cancel()

        # Retrieve outcomes so no completion is left with an unobserved error.
        for name, service in self.services.items():
            completion = service.completion
            if completion is not None and completion not in self._handled:
                self._handle_completion(name, completion)

        for service in self.services.values():
            manager = service.manager
            try:
                if self.keep_data:
                    await manager.stop()
                else:
                    await manager.cleanup()
            except EngineError as exc:
                logger.error("%s: teardown failed: %s", manager.name, exc)
