"""Tests for the node lifecycle manager against the in-memory engine."""

from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from ethnode.engine import ContainerState, LogStream, VolumeSpec
from ethnode.node import HealthState, NodeConfig, NodeLifecycleManager, NodeState
from ethnode.types import (
    ContainerError,
    EngineError,
    NodeUnhealthyError,
    NodeUnresponsiveError,
)
from tests.ethnode.helpers import FakeEngine, fast_policy, make_node_config


async def _start(manager: NodeLifecycleManager) -> str:
    container_id = await manager.initialize()
    await manager.start_container()
    return container_id


class TestInitialize:
    """Tests for container creation."""

    @pytest.mark.asyncio
    async def test_creates_container_and_data_volume(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """The data volume exists before the container is created."""
        container_id = await manager.initialize()

        assert manager.container_id == container_id
        assert manager.state is NodeState.CREATED
        assert "reth_data" in engine.volumes
        assert engine.calls.index(("create_volume", "reth_data")) < engine.calls.index(
            ("create_container", "reth")
        )

    @pytest.mark.asyncio
    async def test_is_idempotent(self, manager: NodeLifecycleManager, engine: FakeEngine) -> None:
        """A second initialize returns the same id and creates nothing."""
        first = await manager.initialize()
        second = await manager.initialize()

        assert first == second
        assert engine.count("create_container") == 1
        assert len(engine.containers) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_once(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Concurrent initialize calls agree on one container."""
        ids = await asyncio.gather(*(manager.initialize() for _ in range(5)))

        assert len(set(ids)) == 1
        assert engine.count("create_container") == 1

    @pytest.mark.asyncio
    async def test_pulls_missing_image(self, engine: FakeEngine) -> None:
        """An image the engine lacks is pulled first."""
        manager = NodeLifecycleManager(
            engine, make_node_config(image="example/other:1"), policy=fast_policy()
        )

        await manager.initialize()

        assert ("pull_image", "example/other:1") in engine.calls

    @pytest.mark.asyncio
    async def test_replaces_stale_container(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A leftover container with the same name is removed and creation retried."""
        stale = NodeLifecycleManager(engine, manager.config, policy=fast_policy())
        stale_id = await stale.initialize()

        container_id = await manager.initialize()

        assert container_id != stale_id
        assert stale_id not in engine.containers
        assert engine.count("create_container") == 3

    @pytest.mark.asyncio
    async def test_engine_errors_propagate(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Create failures surface as engine errors and leave no id behind."""
        engine.failures["create_container"] = EngineError("create_container", "reth", "boom")

        with pytest.raises(EngineError):
            await manager.initialize()

        assert manager.container_id is None


class TestStartContainer:
    """Tests for starting."""

    @pytest.mark.asyncio
    async def test_without_container_is_noop(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Starting before initialize only warns."""
        await manager.start_container()

        assert engine.count("start_container") == 0
        assert manager.state is NodeState.UNINITIALIZED


class TestCheckHealth:
    """Tests for single probes."""

    @pytest.mark.asyncio
    async def test_running_container_is_healthy(
        self, manager: NodeLifecycleManager
    ) -> None:
        """A running container with clean logs is healthy."""
        await _start(manager)

        verdict = await manager.check_health()

        assert verdict == HealthState.ok()
        assert manager.last_health == verdict
        assert manager.state is NodeState.HEALTHY

    @pytest.mark.asyncio
    async def test_exit_code_skips_logs(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A failed exit is reported without reading logs."""
        engine.start_states["reth"] = ContainerState(running=False, exit_code=1)
        await _start(manager)

        verdict = await manager.check_health()

        assert verdict == HealthState.unhealthy("exit_code=1")
        assert engine.count("container_logs") == 0

    @pytest.mark.asyncio
    async def test_stopped_container_is_unhealthy(
        self, manager: NodeLifecycleManager
    ) -> None:
        """After stop the container no longer runs."""
        await _start(manager)
        await manager.stop()

        verdict = await manager.check_health()

        assert verdict == HealthState.unhealthy("not running")
        assert manager.state is NodeState.STOPPED

    @pytest.mark.asyncio
    async def test_without_container(self, manager: NodeLifecycleManager) -> None:
        """Probing before initialize is unhealthy."""
        assert await manager.check_health() == HealthState.unhealthy("no container")

    @pytest.mark.asyncio
    async def test_after_remove(self, manager: NodeLifecycleManager) -> None:
        """Probing after remove is unhealthy."""
        await _start(manager)
        await manager.remove()

        assert not (await manager.check_health()).healthy

    @pytest.mark.asyncio
    async def test_container_gone_behind_our_back(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A container removed outside ethnode is reported as not found."""
        container_id = await _start(manager)
        del engine.containers[container_id]

        assert await manager.check_health() == HealthState.unhealthy("container not found")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("line", ["database error", "Error opening file"])
    async def test_error_markers_in_either_stream(
        self, manager: NodeLifecycleManager, engine: FakeEngine, line: str
    ) -> None:
        """Marker lines on stderr count like stdout."""
        container_id = await _start(manager)
        engine.write_logs(container_id, "syncing", line, stream=LogStream.STDERR)

        verdict = await manager.check_health()

        assert verdict == HealthState.unhealthy(f"log error: {line}")

    @pytest.mark.asyncio
    async def test_only_recent_lines_are_scanned(
        self, engine: FakeEngine, node_config: NodeConfig
    ) -> None:
        """Errors older than the log tail are ignored."""
        manager = NodeLifecycleManager(engine, node_config, policy=fast_policy(log_tail=3))
        container_id = await _start(manager)
        engine.write_logs(container_id, "old error", "a", "b", "c")

        assert (await manager.check_health()).healthy

    @pytest.mark.asyncio
    async def test_log_read_failure_is_unhealthy(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Logs that cannot be read make the probe fail."""
        await _start(manager)
        engine.failures["container_logs"] = EngineError("container_logs", "reth", "io timeout")

        verdict = await manager.check_health()

        assert verdict == HealthState.unhealthy("log read failed: io timeout")

    @pytest.mark.asyncio
    async def test_readiness_marker_only_when_required(
        self, engine: FakeEngine
    ) -> None:
        """The marker gates readiness but not supervision probes."""
        manager = NodeLifecycleManager(
            engine, make_node_config(readiness_marker="Started"), policy=fast_policy()
        )
        container_id = await _start(manager)

        assert (await manager.check_health()).healthy
        assert not (await manager.check_health(require_ready=True)).healthy

        engine.write_logs(container_id, "Started node")
        assert (await manager.check_health(require_ready=True)).healthy

    @pytest.mark.asyncio
    async def test_readiness_endpoint(self, engine: FakeEngine) -> None:
        """A non-2xx answer from the readiness endpoint is unhealthy."""
        status = {"code": 503}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/eth/v1/node/health"
            return httpx.Response(status["code"])

        manager = NodeLifecycleManager(
            engine,
            make_node_config(readiness_url="http://127.0.0.1:5052/eth/v1/node/health"),
            policy=fast_policy(),
            transport=httpx.MockTransport(handler),
        )
        await _start(manager)

        verdict = await manager.check_health()
        assert verdict == HealthState.unhealthy("readiness endpoint returned 503")

        status["code"] = 200
        assert (await manager.check_health()).healthy

    @pytest.mark.asyncio
    async def test_unreachable_readiness_endpoint(self, engine: FakeEngine) -> None:
        """Transport failures are unhealthy, not errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        manager = NodeLifecycleManager(
            engine,
            make_node_config(readiness_url="http://127.0.0.1:1/health"),
            policy=fast_policy(),
            transport=httpx.MockTransport(handler),
        )
        await _start(manager)

        verdict = await manager.check_health()

        assert not verdict.healthy
        assert verdict.reason is not None
        assert verdict.reason.startswith("readiness endpoint unreachable")


class TestWaitForHealthy:
    """Tests for the bounded readiness wait."""

    @pytest.mark.asyncio
    async def test_healthy_on_first_probe(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A node that is ready right away needs one probe."""
        await _start(manager)

        verdict = await manager.wait_for_healthy()

        assert verdict.healthy
        assert engine.count("inspect_container") == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, engine: FakeEngine) -> None:
        """A node that never gets ready fails after max_retries probes."""
        policy = fast_policy(retry_interval=0.01, max_retries=4)
        manager = NodeLifecycleManager(engine, make_node_config(), policy=policy)
        engine.start_states["reth"] = ContainerState(running=False, exit_code=1)
        await _start(manager)

        started = time.monotonic()
        with pytest.raises(NodeUnresponsiveError) as exc_info:
            await manager.wait_for_healthy()
        elapsed = time.monotonic() - started

        assert exc_info.value.attempts == 4
        assert exc_info.value.last_reason == "exit_code=1"
        assert engine.count("inspect_container") == 4
        assert elapsed < policy.retry_interval * policy.max_retries + 1.0

    @pytest.mark.asyncio
    async def test_becomes_ready_later(self, engine: FakeEngine) -> None:
        """Probing continues until the readiness marker shows up."""
        manager = NodeLifecycleManager(
            engine,
            make_node_config(readiness_marker="Started"),
            policy=fast_policy(retry_interval=0.01, max_retries=50),
        )
        container_id = await _start(manager)

        async def become_ready() -> None:
            await asyncio.sleep(0.05)
            engine.write_logs(container_id, "Started node")

        writer = asyncio.create_task(become_ready())
        verdict = await manager.wait_for_healthy()
        await writer

        assert verdict.healthy
        assert engine.count("inspect_container") > 1


class TestMonitorHealth:
    """Tests for the supervision loop."""

    @pytest.mark.asyncio
    async def test_exits_on_unhealthy(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """An OOM kill after healthy probes ends supervision with its reason."""
        container_id = await _start(manager)
        stop = asyncio.Event()
        monitor = asyncio.create_task(manager.monitor_health(stop))

        await asyncio.sleep(0.03)
        assert not monitor.done()

        engine.crash(container_id, exit_code=137, oom_killed=True)
        with pytest.raises(NodeUnhealthyError) as exc_info:
            await asyncio.wait_for(monitor, timeout=1.0)

        assert exc_info.value.reason == "oom_killed"
        assert manager.state is NodeState.UNHEALTHY

    @pytest.mark.asyncio
    async def test_stop_returns_promptly(self, engine: FakeEngine) -> None:
        """Setting the stop event ends the loop without waiting for the interval."""
        manager = NodeLifecycleManager(
            engine, make_node_config(), policy=fast_policy(monitor_interval=60.0)
        )
        await _start(manager)
        stop = asyncio.Event()
        monitor = asyncio.create_task(manager.monitor_health(stop))

        await asyncio.sleep(0.01)
        stop.set()

        await asyncio.wait_for(monitor, timeout=1.0)

    @pytest.mark.asyncio
    async def test_suspended_probes_are_skipped(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """While suspended an unhealthy container does not end supervision."""
        container_id = await _start(manager)
        stop = asyncio.Event()

        async with manager.suspend_monitoring():
            engine.crash(container_id)
            monitor = asyncio.create_task(manager.monitor_health(stop))
            await asyncio.sleep(0.03)
            assert not monitor.done()
            assert engine.count("inspect_container") == 0

        with pytest.raises(NodeUnhealthyError):
            await asyncio.wait_for(monitor, timeout=1.0)


class TestTeardown:
    """Tests for stop, remove and cleanup."""

    @pytest.mark.asyncio
    async def test_stop_keeps_container(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Stop leaves the container for a later start."""
        container_id = await _start(manager)

        await manager.stop()

        assert manager.container_id == container_id
        assert container_id in engine.containers

    @pytest.mark.asyncio
    async def test_stop_without_container(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Stop before initialize is a no-op."""
        await manager.stop()

        assert engine.count("stop_container") == 0

    @pytest.mark.asyncio
    async def test_stop_tolerates_missing_container(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """A container removed elsewhere does not make stop fail."""
        container_id = await _start(manager)
        del engine.containers[container_id]

        await manager.stop()

        assert manager.state is NodeState.STOPPED

    @pytest.mark.asyncio
    async def test_remove_without_container(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Remove before initialize succeeds without touching the engine."""
        await manager.remove()

        assert engine.count("remove_container") == 0
        assert manager.container_id is None

    @pytest.mark.asyncio
    async def test_remove_clears_id(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """After remove a fresh initialize creates a new container."""
        first = await _start(manager)

        await manager.remove()

        assert manager.container_id is None
        assert manager.state is NodeState.REMOVED
        assert first not in engine.containers
        assert await manager.initialize() != first

    @pytest.mark.asyncio
    async def test_remove_twice(self, manager: NodeLifecycleManager) -> None:
        """Removing again is harmless."""
        await _start(manager)

        await manager.remove()
        await manager.remove()

    @pytest.mark.asyncio
    async def test_cleanup_keeps_shared_resources(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Cleanup removes the data volume but not shared resources."""
        engine.networks["eth_network"] = "bridge"
        engine.volumes["reth_jwt"] = VolumeSpec("reth_jwt")
        await _start(manager)

        await manager.cleanup()

        assert engine.containers == {}
        assert "reth_data" not in engine.volumes
        assert "reth_jwt" in engine.volumes
        assert "eth_network" in engine.networks


class TestInspection:
    """Tests for logs, reconfigure and status."""

    @pytest.mark.asyncio
    async def test_logs_require_container(self, manager: NodeLifecycleManager) -> None:
        """Logs before initialize are an error."""
        with pytest.raises(ContainerError):
            await manager.logs()

    @pytest.mark.asyncio
    async def test_logs_and_follow(
        self, manager: NodeLifecycleManager, engine: FakeEngine
    ) -> None:
        """Recent and streamed lines come from the owned container."""
        container_id = await _start(manager)
        engine.write_logs(container_id, "one", "two", "three")

        assert [line.message for line in await manager.logs(tail=2)] == ["two", "three"]
        assert [line.message async for line in manager.follow_logs()] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_reconfigure_requires_removal(self, manager: NodeLifecycleManager) -> None:
        """The descriptor can only change while no container exists."""
        await manager.initialize()

        with pytest.raises(ContainerError):
            await manager.reconfigure(image="example/reth:next")

        await manager.remove()
        config = await manager.reconfigure(image="example/reth:next")

        assert config.image == "example/reth:next"
        assert manager.config is config

    @pytest.mark.asyncio
    async def test_reconfigure_cannot_rename(self, manager: NodeLifecycleManager) -> None:
        """The name identifies the node and stays fixed."""
        with pytest.raises(ValueError):
            await manager.reconfigure(name="geth")

    @pytest.mark.asyncio
    async def test_status(self, manager: NodeLifecycleManager) -> None:
        """Status reports state, id and the last verdict."""
        container_id = await _start(manager)
        await manager.check_health()

        assert manager.status() == {
            "name": "reth",
            "image": "example/reth:test",
            "state": "healthy",
            "container_id": container_id,
            "healthy": True,
            "reason": None,
        }
