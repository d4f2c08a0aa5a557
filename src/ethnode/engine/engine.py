"""
Abstract container engine interface.

Defines the Protocol that every engine adapter must follow.
Uses structural subtyping, so test doubles need no inheritance.

All operations are coroutines. Every one of them is a suspension point for
the calling task, and every one of them may raise EngineError.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .logs import LogLine
    from .models import ContainerSpec, ContainerState, VolumeSpec


class ContainerEngine(Protocol):
    """
    Protocol for the container runtime a node supervisor drives.

    Resource Organization
    ---------------------
    - Images: addressed by reference ("repo:tag")
    - Containers: addressed by the id returned from create
    - Networks and volumes: addressed by name
    """

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def image_exists(self, reference: str) -> bool:
        """Check whether the image is present locally."""
        ...

    async def pull_image(self, reference: str) -> None:
        """Pull an image, blocking until the pull completes."""
        ...

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def create_container(self, spec: ContainerSpec) -> str:
        """
        Create a container.

        Args:
            spec: Full creation spec.

        Returns:
            Engine-assigned container id.

        Raises:
            ResourceConflictError: If a container with the same name exists.
        """
        ...

    async def start_container(self, container_id: str) -> None:
        """Start a created or stopped container."""
        ...

    async def stop_container(self, container_id: str, timeout: int) -> None:
        """Stop a container, killing it after timeout seconds."""
        ...

    async def remove_container(self, container_id: str, *, force: bool = True) -> None:
        """Remove a container, killing it first when force is set."""
        ...

    async def inspect_container(self, container_id: str) -> ContainerState | None:
        """
        Inspect a container's runtime state.

        Returns:
            State snapshot, or None when the engine reports no state.

        Raises:
            ResourceNotFoundError: If the container does not exist.
        """
        ...

    async def wait_container(self, container_id: str) -> int:
        """Block until the container exits and return its exit code."""
        ...

    async def container_logs(
        self,
        container_id: str,
        *,
        tail: int | None = None,
        timestamps: bool = True,
    ) -> list[LogLine]:
        """
        Fetch recent log lines from both output streams.

        Args:
            container_id: Container to read from.
            tail: Number of most recent lines to return; None for all.
            timestamps: Whether the engine should prefix timestamps.
        """
        ...

    def follow_logs(self, container_id: str, *, timestamps: bool = True) -> AsyncIterator[LogLine]:
        """Stream log lines as the container writes them."""
        ...

    # -------------------------------------------------------------------------
    # Networks
    # -------------------------------------------------------------------------

    async def network_exists(self, name: str) -> bool:
        """Check whether a network with this name exists."""
        ...

    async def create_network(self, name: str, driver: str = "bridge") -> None:
        """
        Create a network.

        Raises:
            ResourceConflictError: If the network already exists.
        """
        ...

    async def remove_network(self, name: str) -> None:
        """Remove a network."""
        ...

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------

    async def volume_exists(self, name: str) -> bool:
        """Check whether a volume with this name exists."""
        ...

    async def create_volume(self, spec: VolumeSpec) -> None:
        """
        Create a volume.

        Raises:
            ResourceConflictError: If the volume already exists.
        """
        ...

    async def remove_volume(self, name: str) -> None:
        """Remove a volume."""
        ...
