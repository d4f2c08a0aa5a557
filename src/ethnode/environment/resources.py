"""
Idempotent provisioning of engine resources.

Every ensure_* call checks for the resource first and creates it only when
missing. The check and the create are not atomic against the engine, so a
conflict raised by the create means another caller won the race and is
treated the same as finding the resource.
"""

from __future__ import annotations

import logging

from ethnode.engine import ContainerEngine, VolumeSpec
from ethnode.metrics import environment_resources_created
from ethnode.types import ResourceConflictError, ResourceNotFoundError

logger = logging.getLogger(__name__)


async def ensure_network(engine: ContainerEngine, name: str, driver: str = "bridge") -> bool:
    """
    Make sure a network exists.

    Returns:
        True if this call created the network.
    """
    if await engine.network_exists(name):
        logger.debug("Network %s already exists", name)
        return False
    try:
        await engine.create_network(name, driver=driver)
    except ResourceConflictError:
        logger.debug("Network %s was created concurrently", name)
        return False
    environment_resources_created.labels(kind="network").inc()
    logger.info("Created network %s (driver=%s)", name, driver)
    return True


async def ensure_volume(engine: ContainerEngine, spec: VolumeSpec) -> bool:
    """
    Make sure a volume exists.

    Returns:
        True if this call created the volume.
    """
    if await engine.volume_exists(spec.name):
        logger.debug("Volume %s already exists", spec.name)
        return False
    try:
        await engine.create_volume(spec)
    except ResourceConflictError:
        logger.debug("Volume %s was created concurrently", spec.name)
        return False
    environment_resources_created.labels(kind="volume").inc()
    logger.info("Created volume %s (driver=%s)", spec.name, spec.driver)
    return True


async def remove_network(engine: ContainerEngine, name: str) -> bool:
    """
    Remove a network if present.

    Returns:
        True if a network was removed.
    """
    try:
        await engine.remove_network(name)
    except ResourceNotFoundError:
        logger.debug("Network %s already absent", name)
        return False
    logger.info("Removed network %s", name)
    return True


async def remove_volume(engine: ContainerEngine, name: str) -> bool:
    """
    Remove a volume if present.

    Returns:
        True if a volume was removed.
    """
    try:
        await engine.remove_volume(name)
    except ResourceNotFoundError:
        logger.debug("Volume %s already absent", name)
        return False
    logger.info("Removed volume %s", name)
    return True
