"""
Docker implementation of the container engine interface.

The docker SDK is synchronous. Every call is pushed onto a worker thread
with asyncio.to_thread so that node tasks sharing one event loop never
block each other while the daemon works.

SDK exceptions are translated at this boundary:

- docker.errors.NotFound          -> ResourceNotFoundError
- docker.errors.APIError (409)    -> ResourceConflictError
- anything else from the SDK      -> EngineError
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.utils import parse_repository_tag
from requests.exceptions import RequestException

from ethnode.config import DOCKER_TIMEOUT
from ethnode.types import EngineError, ResourceConflictError, ResourceNotFoundError

from .logs import LineBuffer, LogLine, LogStream, decode_chunk, merge_streams
from .models import ContainerSpec, ContainerState, VolumeSpec

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_HTTP_CONFLICT = 409
"""Status the daemon returns when a named resource already exists."""


def _explain(exc: Exception) -> str:
    """Extract the daemon's explanation from an SDK exception."""
    if isinstance(exc, APIError) and exc.explanation:
        return str(exc.explanation)
    return str(exc)


@dataclass(slots=True)
class DockerEngine:
    """
    Container engine backed by a local or remote Docker daemon.

    Uses the low-level API client for precise control over host config and
    networking config, the same way the daemon's REST API expresses them.
    """

    client: docker.DockerClient
    """SDK client. Shared by every node; never closed by a node."""

    @classmethod
    def from_env(cls, timeout: float = DOCKER_TIMEOUT) -> DockerEngine:
        """
        Connect using DOCKER_HOST and related environment variables.

        Raises:
            EngineError: If the daemon cannot be reached.
        """
        try:
            client = docker.from_env(timeout=int(timeout))
            client.ping()
        except (DockerException, RequestException) as exc:
            raise EngineError("connect", "docker daemon", _explain(exc)) from exc
        return cls(client=client)

    @property
    def api(self) -> docker.APIClient:
        """Low-level API client."""
        return self.client.api

    async def _call(
        self,
        operation: str,
        target: str,
        fn: Callable[..., _T],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Run a blocking SDK call on a worker thread and translate its errors."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except NotFound as exc:
            raise ResourceNotFoundError(operation, target, _explain(exc)) from exc
        except APIError as exc:
            if exc.status_code == _HTTP_CONFLICT:
                raise ResourceConflictError(operation, target, _explain(exc)) from exc
            raise EngineError(operation, target, _explain(exc)) from exc
        except (DockerException, RequestException) as exc:
            raise EngineError(operation, target, _explain(exc)) from exc

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def image_exists(self, reference: str) -> bool:
        """Check whether the image is present locally."""
        try:
            await self._call("inspect_image", reference, self.api.inspect_image, reference)
        except ResourceNotFoundError:
            return False
        return True

    async def pull_image(self, reference: str) -> None:
        """Pull an image, logging progress at debug level."""
        repository, tag = parse_repository_tag(reference)

        def _pull() -> None:
            for event in self.api.pull(repository, tag=tag or "latest", stream=True, decode=True):
                # Pull failures arrive in-band rather than as HTTP errors.
                if "error" in event:
                    raise EngineError("pull_image", reference, str(event["error"]))
                if "status" in event:
                    logger.debug(
                        "Pull %s: %s %s", reference, event["status"], event.get("progress", "")
                    )

        await self._call("pull_image", reference, _pull)

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def create_container(self, spec: ContainerSpec) -> str:
        """Create a container from a spec and return its id."""
        target = spec.name or spec.image

        def _create() -> str:
            # The SDK only reads lists as several bindings for one port.
            port_bindings = {key: list(pairs) for key, pairs in spec.port_bindings.items()}
            host_config = self.api.create_host_config(
                binds=list(spec.binds) or None,
                port_bindings=port_bindings or None,
                network_mode=spec.network,
                privileged=spec.privileged,
                restart_policy={"Name": spec.restart_policy.value},
            )

            # Aliases are endpoint settings, so they need a networking config
            # keyed by the network the container attaches to.
            networking_config = None
            if spec.network is not None and spec.aliases:
                networking_config = self.api.create_networking_config(
                    {spec.network: self.api.create_endpoint_config(aliases=list(spec.aliases))}
                )

            exposed = []
            for key in spec.exposed_ports:
                port, _, protocol = key.partition("/")
                exposed.append((int(port), protocol or "tcp"))

            response = self.api.create_container(
                image=spec.image,
                command=list(spec.command) or None,
                name=spec.name,
                user=spec.user,
                environment=dict(spec.environment) or None,
                ports=exposed or None,
                host_config=host_config,
                networking_config=networking_config,
                labels=dict(spec.labels) or None,
                platform=spec.platform,
            )
            return str(response["Id"])

        return await self._call("create_container", target, _create)

    async def start_container(self, container_id: str) -> None:
        """Start a container."""
        await self._call("start_container", container_id, self.api.start, container_id)

    async def stop_container(self, container_id: str, timeout: int) -> None:
        """Stop a container."""
        await self._call(
            "stop_container", container_id, self.api.stop, container_id, timeout=timeout
        )

    async def remove_container(self, container_id: str, *, force: bool = True) -> None:
        """Remove a container."""
        await self._call(
            "remove_container",
            container_id,
            self.api.remove_container,
            container_id,
            force=force,
        )

    async def inspect_container(self, container_id: str) -> ContainerState | None:
        """Inspect a container's runtime state."""
        payload = await self._call(
            "inspect_container", container_id, self.api.inspect_container, container_id
        )
        return ContainerState.from_inspect(payload)

    async def wait_container(self, container_id: str) -> int:
        """Block until the container exits and return its exit code."""
        result = await self._call("wait_container", container_id, self.api.wait, container_id)
        return int(result.get("StatusCode", -1))

    async def container_logs(
        self,
        container_id: str,
        *,
        tail: int | None = None,
        timestamps: bool = True,
    ) -> list[LogLine]:
        """
        Fetch recent log lines from both output streams.

        Each stream is fetched separately so lines keep their origin,
        then the two are merged back into timestamp order.
        """
        tail_arg: int | str = "all" if tail is None else tail

        def _fetch(stream: LogStream) -> list[LogLine]:
            raw = self.api.logs(
                container_id,
                stdout=stream is LogStream.STDOUT,
                stderr=stream is LogStream.STDERR,
                timestamps=timestamps,
                tail=tail_arg,
            )
            return decode_chunk(raw, stream, timestamps=timestamps)

        stdout = await self._call("container_logs", container_id, _fetch, LogStream.STDOUT)
        stderr = await self._call("container_logs", container_id, _fetch, LogStream.STDERR)

        merged = merge_streams(stdout, stderr)
        return merged if tail is None else merged[-tail:]

    async def follow_logs(
        self, container_id: str, *, timestamps: bool = True
    ) -> AsyncIterator[LogLine]:
        """Stream log lines until the container exits or the caller stops iterating."""
        stream = await self._call(
            "follow_logs",
            container_id,
            self.api.logs,
            container_id,
            stdout=True,
            stderr=True,
            stream=True,
            follow=True,
            timestamps=timestamps,
        )
        buffer = LineBuffer(LogStream.COMBINED, timestamps=timestamps)
        try:
            while True:
                chunk = await self._call("follow_logs", container_id, next, stream, None)
                if chunk is None:
                    break
                for line in buffer.feed(chunk):
                    yield line
            for line in buffer.flush():
                yield line
        finally:
            # Shutting the socket down also wakes a worker still blocked in next().
            try:
                stream.close()
            except DockerException as exc:
                # SSH transports cannot interrupt a stream.
                logger.debug("Cannot close log stream of %s: %s", container_id[:12], exc)

    # -------------------------------------------------------------------------
    # Networks
    # -------------------------------------------------------------------------

    async def network_exists(self, name: str) -> bool:
        """Check whether a network with this name exists."""
        try:
            await self._call("inspect_network", name, self.api.inspect_network, name)
        except ResourceNotFoundError:
            return False
        return True

    async def create_network(self, name: str, driver: str = "bridge") -> None:
        """Create a network."""
        await self._call("create_network", name, self.api.create_network, name, driver=driver)

    async def remove_network(self, name: str) -> None:
        """Remove a network."""
        await self._call("remove_network", name, self.api.remove_network, name)

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------

    async def volume_exists(self, name: str) -> bool:
        """Check whether a volume with this name exists."""
        try:
            await self._call("inspect_volume", name, self.api.inspect_volume, name)
        except ResourceNotFoundError:
            return False
        return True

    async def create_volume(self, spec: VolumeSpec) -> None:
        """Create a volume."""
        await self._call(
            "create_volume",
            spec.name,
            self.api.create_volume,
            name=spec.name,
            driver=spec.driver,
            driver_opts=dict(spec.driver_opts) or None,
        )

    async def remove_volume(self, name: str) -> None:
        """Remove a volume."""
        await self._call("remove_volume", name, self.api.remove_volume, name)
