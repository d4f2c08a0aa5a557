"""Engine-facing value types: container state and container creation specs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any


class RestartPolicy(str, Enum):
    """Restart policy names understood by the engine."""

    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


def freeze(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only copy of a mapping."""
    return MappingProxyType(dict(mapping))


def _hashable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return tuple(sorted((key, _hashable(item)) for key, item in value.items()))
    return value


def hash_fields(obj: Any) -> int:
    """Hash a frozen dataclass whose fields include read-only mappings."""
    return hash(tuple(_hashable(getattr(obj, f.name)) for f in fields(obj)))


@dataclass(frozen=True, slots=True)
class ContainerState:
    """
    Snapshot of a container's runtime state as reported by inspect.

    Only the fields health evaluation needs are kept.
    """

    running: bool
    """Whether the main process is running."""

    exit_code: int = 0
    """Exit code of the last run (0 while running)."""

    oom_killed: bool = False
    """Whether the kernel OOM killer terminated the container."""

    error: str = ""
    """Engine-reported error string, empty when none."""

    status: str = ""
    """Engine status word (created, running, exited, ...)."""

    @classmethod
    def from_inspect(cls, payload: dict[str, Any]) -> ContainerState | None:
        """
        Build a state snapshot from a raw inspect payload.

        Returns None when the payload carries no State section.
        """
        state = payload.get("State")
        if not state:
            return None
        return cls(
            running=bool(state.get("Running", False)),
            exit_code=int(state.get("ExitCode") or 0),
            oom_killed=bool(state.get("OOMKilled", False)),
            error=state.get("Error") or "",
            status=state.get("Status") or "",
        )


@dataclass(frozen=True, slots=True)
class ContainerSpec:
    """
    Everything the engine needs to create one container.

    Port bindings map "<port>/<proto>" to (host_ip, host_port) pairs.
    Binds use the engine's "source:target[:mode]" notation.
    """

    image: str
    name: str | None = None
    command: tuple[str, ...] = ()
    user: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    binds: tuple[str, ...] = ()
    port_bindings: Mapping[str, tuple[tuple[str, int], ...]] = field(default_factory=dict)
    network: str | None = None
    aliases: tuple[str, ...] = ()
    restart_policy: RestartPolicy = RestartPolicy.NO
    privileged: bool = False
    platform: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "environment", freeze(self.environment))
        object.__setattr__(
            self,
            "port_bindings",
            freeze({key: tuple(pairs) for key, pairs in self.port_bindings.items()}),
        )
        object.__setattr__(self, "labels", freeze(self.labels))

    def __hash__(self) -> int:
        return hash_fields(self)

    @property
    def exposed_ports(self) -> list[str]:
        """Container ports that must be exposed for the bindings to apply."""
        return sorted(self.port_bindings)


@dataclass(frozen=True, slots=True)
class VolumeSpec:
    """A named volume and the driver options used to create it."""

    name: str
    driver: str = "local"
    driver_opts: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "driver_opts", freeze(self.driver_opts))

    def __hash__(self) -> int:
        return hash_fields(self)
