"""Tests for background node supervision and the multi-node supervisor."""

from __future__ import annotations

import asyncio

import pytest

from ethnode.engine import ContainerState
from ethnode.environment import EnvironmentInitializer
from ethnode.metrics import REGISTRY
from ethnode.node import NodeLifecycleManager, NodeState
from ethnode.service import NodeService, Supervisor
from ethnode.types import NodeUnhealthyError, NodeUnresponsiveError
from tests.ethnode.helpers import FakeEngine, fast_policy, make_node_config

SECRET = "ab" * 32


def _supervisor(engine: FakeEngine, *names: str, **kwargs: object) -> Supervisor:
    configs = [
        make_node_config(name=name, data_volume=None, command=()) for name in names or ("reth",)
    ]
    return Supervisor.from_configs(
        engine,
        EnvironmentInitializer(engine, secret=SECRET),
        configs,
        policy=fast_policy(),
        **kwargs,  # type: ignore[arg-type]
    )


async def _wait_until(predicate, timeout: float = 1.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestNodeService:
    """Tests for one node's background lifecycle."""

    @pytest.mark.asyncio
    async def test_stop_resolves_with_none(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A stopped service completes normally."""
        service = NodeService(manager)
        completion = service.start()

        await _wait_until(lambda: manager.state is NodeState.HEALTHY)
        assert service.is_running
        service.stop()

        assert await asyncio.wait_for(completion, timeout=1.0) is None
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_failure_is_set_on_completion(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A node that turns unhealthy fails the completion."""
        service = NodeService(manager)
        completion = service.start()

        await _wait_until(lambda: manager.state is NodeState.HEALTHY)
        assert manager.container_id is not None
        engine.crash(manager.container_id, oom_killed=True)

        with pytest.raises(NodeUnhealthyError):
            await asyncio.wait_for(completion, timeout=1.0)

    @pytest.mark.asyncio
    async def test_never_ready(self, manager: NodeLifecycleManager, engine: FakeEngine) -> None:
        """A node that never gets ready fails with NodeUnresponsiveError."""
        engine.start_states["reth"] = ContainerState(running=False, exit_code=2)
        service = NodeService(manager)

        with pytest.raises(NodeUnresponsiveError):
            await asyncio.wait_for(service.start(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_start_while_running_returns_same_completion(
        self, manager: NodeLifecycleManager
    ) -> None:
        """Starting twice does not spawn a second run."""
        service = NodeService(manager)

        first = service.start()
        second = service.start()

        assert first is second
        service.stop()
        await asyncio.wait_for(first, timeout=1.0)

    @pytest.mark.asyncio
    async def test_errors_after_stop_are_not_failures(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A probe that fails because of the requested stop completes normally."""
        service = NodeService(manager)
        completion = service.start()
        await _wait_until(lambda: manager.state is NodeState.HEALTHY)

        service.stop()
        assert manager.container_id is not None
        engine.crash(manager.container_id)

        assert await asyncio.wait_for(completion, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(self, manager: NodeLifecycleManager) -> None:
        """Cancelling right after start still resolves the completion."""
        service = NodeService(manager)
        completion = service.start()

        await service.cancel()

        assert completion.cancelled()


class TestSupervisor:
    """Tests for deployment-wide supervision."""

    @pytest.mark.asyncio
    async def test_environment_before_nodes(self) -> None:
        """The shared environment exists before any container is created."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", "lighthouse")
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        await _wait_until(
            lambda: all(s.manager.state is NodeState.HEALTHY for s in supervisor.services.values())
        )
        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

        first_create = next(
            i for i, call in enumerate(engine.calls) if call[0] == "create_container"
        )
        assert engine.calls.index(("create_network", "eth_network")) < first_create
        assert supervisor.failures == {}

    @pytest.mark.asyncio
    async def test_failure_shuts_down(self) -> None:
        """One failed node ends supervision of every node."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", "lighthouse")
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        reth = supervisor.services["reth"].manager
        await _wait_until(lambda: reth.state is NodeState.HEALTHY)
        assert reth.container_id is not None
        engine.crash(reth.container_id, exit_code=139)

        await asyncio.wait_for(runner, timeout=2.0)

        assert set(supervisor.failures) == {"reth"}
        assert isinstance(supervisor.failures["reth"], NodeUnhealthyError)
        assert not supervisor.is_running
        assert not supervisor.services["lighthouse"].is_running
        failures = REGISTRY.get_sample_value(
            "ethnode_service_failures_total", {"node": "reth", "error": "NodeUnhealthyError"}
        )
        assert failures is not None and failures >= 1

    @pytest.mark.asyncio
    async def test_failure_tolerated_when_configured(self) -> None:
        """With exit_on_failure off, other nodes keep running."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", "lighthouse", exit_on_failure=False)
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        reth = supervisor.services["reth"].manager
        await _wait_until(lambda: reth.state is NodeState.HEALTHY)
        assert reth.container_id is not None
        engine.crash(reth.container_id)

        await _wait_until(lambda: "reth" in supervisor.failures)
        assert supervisor.is_running
        assert supervisor.services["lighthouse"].is_running

        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

    @pytest.mark.asyncio
    async def test_shutdown_cleans_up(self) -> None:
        """A shutdown request removes every container."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", "lighthouse")
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        reth = supervisor.services["reth"].manager
        await _wait_until(lambda: reth.state is NodeState.HEALTHY)
        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

        assert engine.containers == {}
        assert reth.state is NodeState.REMOVED

    @pytest.mark.asyncio
    async def test_keep_data_stops_containers(self) -> None:
        """With keep_data containers are stopped but kept."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", keep_data=True)
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        reth = supervisor.services["reth"].manager
        await _wait_until(lambda: reth.state is NodeState.HEALTHY)
        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

        assert reth.state is NodeState.STOPPED
        assert reth.container_id in engine.containers

    @pytest.mark.asyncio
    async def test_restarted_service_is_watched(self) -> None:
        """A service started again after a failure is supervised again."""
        engine = FakeEngine(images={"example/reth:test"})
        supervisor = _supervisor(engine, "reth", exit_on_failure=False)
        runner = asyncio.create_task(supervisor.run(install_signal_handlers=False))

        service = supervisor.services["reth"]
        await _wait_until(lambda: service.manager.state is NodeState.HEALTHY)
        assert service.manager.container_id is not None
        engine.crash(service.manager.container_id)
        await _wait_until(lambda: "reth" in supervisor.failures)
        first_failure = supervisor.failures["reth"]

        await service.manager.start_container()
        service.start()
        supervisor.notify()
        await _wait_until(lambda: service.manager.state is NodeState.HEALTHY)
        assert service.manager.container_id is not None
        engine.crash(service.manager.container_id, oom_killed=True)
        await _wait_until(lambda: supervisor.failures["reth"] is not first_failure)

        assert isinstance(supervisor.failures["reth"], NodeUnhealthyError)

        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

    def test_duplicate_names_rejected(self) -> None:
        """Two nodes cannot share a name."""
        engine = FakeEngine()
        with pytest.raises(ValueError, match="Duplicate"):
            Supervisor.from_configs(
                engine,
                EnvironmentInitializer(engine, secret=SECRET),
                [make_node_config(), make_node_config()],
            )
