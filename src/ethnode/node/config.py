"""
Node descriptor: the immutable configuration of one client container.

Everything that differs between an execution client and a consensus client
lives here as data. Command lines are templates rendered against the
descriptor itself, so a new client type needs a new NodeConfig, not new code.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Final

from ethnode.engine import RestartPolicy, VolumeSpec
from ethnode.engine.models import freeze, hash_fields
from ethnode.environment import DEFAULT_NETWORK, DEFAULT_SECRET_PATH, DEFAULT_SECRET_VOLUME

_CONTAINER_NAME: Final = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
"""Names the engine accepts for containers."""

_PROTOCOLS: Final = frozenset({"tcp", "udp"})

DEFAULT_ERROR_MARKERS: Final = ("error", "Error")
"""Log substrings that mark a probe unhealthy."""


@dataclass(frozen=True, slots=True)
class PortBinding:
    """
    One container port and how it is published on the host.

    The name is what command templates refer to: "{ports[http]}".
    """

    name: str
    """Symbolic name used by command templates."""

    container_port: int
    """Port the client listens on inside the container."""

    protocol: str = "tcp"
    """Transport protocol: "tcp" or "udp"."""

    host_ip: str = "0.0.0.0"
    """Host interface to publish on."""

    host_port: int | None = None
    """
    Host port to publish on.

    Defaults to the container port. Set publish=False for ports that are
    only reachable from other containers on the shared network.
    """

    publish: bool = True
    """Whether the port is published on the host at all."""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Port binding name is required.")
        if self.protocol not in _PROTOCOLS:
            raise ValueError(f"Unsupported protocol {self.protocol!r} for port {self.name}.")
        if not 0 < self.container_port < 65536:
            raise ValueError(f"Container port {self.container_port} is out of range.")
        if self.host_port is None:
            object.__setattr__(self, "host_port", self.container_port)
        elif not 0 < self.host_port < 65536:
            raise ValueError(f"Host port {self.host_port} is out of range.")

    @property
    def key(self) -> str:
        """Engine port key, e.g. "9000/udp"."""
        return f"{self.container_port}/{self.protocol}"


@dataclass(frozen=True, slots=True)
class NodeConfig:
    """
    Immutable per-client configuration.

    One instance per client process. Use dataclasses.replace to derive a
    modified copy; the copy is validated again.
    """

    name: str
    """Container name. Also the label used in logs and metrics."""

    image: str
    """Image reference, e.g. "sigp/lighthouse:latest"."""

    command: tuple[str, ...] = ()
    """
    Command-line templates.

    Placeholders: {name}, {chain}, {data_dir}, {secret_path},
    {upstream_endpoint}, {network}, {ports[<port name>]}.
    """

    ports: frozenset[PortBinding] = frozenset()
    """Ports the client listens on."""

    data_dir: str = "/data"
    """Client data directory inside the container."""

    secret_path: str = DEFAULT_SECRET_PATH
    """JWT secret file inside the container."""

    upstream_endpoint: str | None = None
    """Engine API endpoint of the execution client (consensus clients only)."""

    chain: str = "mainnet"
    """Chain the client joins."""

    network: str = DEFAULT_NETWORK
    """Engine network the container attaches to."""

    aliases: tuple[str, ...] = ()
    """DNS aliases on the network. Defaults to the container name."""

    restart_policy: RestartPolicy = RestartPolicy.UNLESS_STOPPED
    """Engine-side restart policy."""

    data_volume: VolumeSpec | None = None
    """Client-exclusive volume mounted at data_dir. Removed by cleanup."""

    secret_volume: str | None = DEFAULT_SECRET_VOLUME
    """Shared volume mounted read-only at the secret's directory."""

    user: str | None = None
    privileged: bool = False
    platform: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)

    readiness_marker: str | None = None
    """Literal log text that must appear before the node counts as ready."""

    readiness_url: str | None = None
    """HTTP endpoint that must answer 2xx for the node to count as healthy."""

    error_markers: tuple[str, ...] = DEFAULT_ERROR_MARKERS
    """Log substrings that make a probe unhealthy."""

    def __post_init__(self) -> None:
        # Accept plain lists and sets from callers and YAML.
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "ports", frozenset(self.ports))
        object.__setattr__(self, "aliases", tuple(self.aliases) or (self.name,))
        object.__setattr__(self, "error_markers", tuple(self.error_markers))
        object.__setattr__(self, "restart_policy", RestartPolicy(self.restart_policy))
        object.__setattr__(self, "environment", freeze(self.environment))

        if not self.name or not _CONTAINER_NAME.match(self.name):
            raise ValueError(f"Invalid node name {self.name!r}.")
        if not self.image:
            raise ValueError(f"Node {self.name} requires an image.")
        for path in (self.data_dir, self.secret_path):
            if not PurePosixPath(path).is_absolute():
                raise ValueError(f"Container path {path!r} must be absolute.")

        names = [port.name for port in self.ports]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate port names in {self.name}: {sorted(names)}")
        keys = [port.key for port in self.ports]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate container ports in {self.name}: {sorted(keys)}")

        # Render once so template mistakes fail at construction, not at create time.
        self.render_command()

    def __hash__(self) -> int:
        return hash_fields(self)

    @property
    def port_map(self) -> dict[str, int]:
        """Container port by symbolic name."""
        return {port.name: port.container_port for port in self.ports}

    @property
    def secret_dir(self) -> str:
        """Directory the secret volume is mounted at."""
        return str(PurePosixPath(self.secret_path).parent)

    def template_context(self) -> dict[str, Any]:
        """Values available to command templates."""
        return {
            "name": self.name,
            "chain": self.chain,
            "data_dir": self.data_dir,
            "secret_path": self.secret_path,
            "upstream_endpoint": self.upstream_endpoint or "",
            "network": self.network,
            "ports": self.port_map,
        }

    def render_command(self) -> tuple[str, ...]:
        """
        Render the command templates.

        Raises:
            ValueError: If a template references an unknown placeholder or port.
        """
        context = self.template_context()
        rendered = []
        for template in self.command:
            try:
                rendered.append(template.format_map(context))
            except (KeyError, IndexError) as exc:
                raise ValueError(
                    f"Command template {template!r} of {self.name} references unknown {exc}"
                ) from exc
        if self.upstream_endpoint is None and any(
            "{upstream_endpoint}" in template for template in self.command
        ):
            raise ValueError(f"Node {self.name} needs an upstream endpoint.")
        return tuple(rendered)
