"""
Shared environment of a deployment.

Every client joins one network and reads one JWT secret from one volume.
These resources belong to the deployment, not to any node: nodes never
create or remove them. The initializer provisions them once before the
first node starts and removes them only on explicit teardown.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field

from ethnode.engine import ContainerEngine, VolumeSpec

from . import resources
from .secret import HELPER_IMAGE, generate_jwt_secret, validate_jwt_secret, write_secret

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "eth_network"
"""Bridge network shared by every client of a deployment."""

DEFAULT_SECRET_VOLUME = "reth_jwt"
"""Volume holding the engine-API JWT secret."""

DEFAULT_SECRET_PATH = "/jwt/jwt.hex"
"""Where clients read the JWT secret inside their containers."""


@dataclass(frozen=True, slots=True)
class SharedEnvironment:
    """Resources shared by every client of a deployment."""

    network: str = DEFAULT_NETWORK
    """Bridge network clients attach to."""

    network_driver: str = "bridge"

    volumes: tuple[VolumeSpec, ...] = ()
    """Extra shared volumes."""

    secret_volume: str = DEFAULT_SECRET_VOLUME
    """Volume holding the JWT secret."""

    secret_path: str = DEFAULT_SECRET_PATH
    """Secret path as clients see it inside their containers."""

    helper_image: str = HELPER_IMAGE
    """Image used to write the secret."""


@dataclass(slots=True)
class EnvironmentInitializer:
    """
    Idempotent provisioning of the shared environment.

    Each resource has its own lock, so concurrent ensure calls for the same
    resource create it exactly once. initialize_environment() is serialized
    as a whole and does its work once per initializer.
    """

    engine: ContainerEngine
    """Container engine. Shared, not owned."""

    environment: SharedEnvironment = field(default_factory=SharedEnvironment)

    secret: str = field(default_factory=generate_jwt_secret, repr=False)
    """Hex-encoded JWT secret written when the volume has none."""

    _init_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _resource_locks: defaultdict[str, asyncio.Lock] = field(
        default_factory=lambda: defaultdict(asyncio.Lock), init=False
    )
    _initialized: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        validate_jwt_secret(self.secret)

    @property
    def initialized(self) -> bool:
        """Whether initialize_environment() has completed."""
        return self._initialized

    async def ensure_network(self, name: str | None = None, driver: str | None = None) -> bool:
        """
        Make sure the network exists.

        Returns:
            True if this call created it.
        """
        name = name or self.environment.network
        async with self._resource_locks[f"network:{name}"]:
            return await resources.ensure_network(
                self.engine, name, driver or self.environment.network_driver
            )

    async def ensure_volume(self, spec: VolumeSpec) -> bool:
        """
        Make sure the volume exists.

        Returns:
            True if this call created it.
        """
        async with self._resource_locks[f"volume:{spec.name}"]:
            return await resources.ensure_volume(self.engine, spec)

    async def ensure_secret(
        self,
        path: str | None = None,
        value: str | None = None,
        volume: str | None = None,
    ) -> bool:
        """
        Write the JWT secret into its volume unless it is already there.

        An existing secret is kept, so restarting the supervisor never
        invalidates the secret running clients were started with.

        Returns:
            True if the secret was written.
        """
        volume = volume or self.environment.secret_volume
        async with self._resource_locks[f"secret:{volume}"]:
            return await write_secret(
                self.engine,
                volume,
                path or self.environment.secret_path,
                value or self.secret,
                helper_image=self.environment.helper_image,
            )

    async def initialize_environment(self) -> None:
        """
        Provision network, shared volumes, secret volume and secret, in order.

        Safe to call from every node; only the first call does work.
        """
        async with self._init_lock:
            if self._initialized:
                return

            env = self.environment
            logger.info("Initializing environment (network=%s)", env.network)

            await self.ensure_network()
            for spec in env.volumes:
                await self.ensure_volume(spec)
            await self.ensure_volume(VolumeSpec(env.secret_volume))
            await self.ensure_secret()

            self._initialized = True
            logger.info("Environment ready")

    async def teardown(self) -> None:
        """
        Remove the shared volumes, the secret volume and the network.

        Resources already absent are skipped. Fails with an engine error
        while containers still use them.
        """
        async with self._init_lock:
            env = self.environment
            logger.info("Tearing down environment (network=%s)", env.network)

            await resources.remove_volume(self.engine, env.secret_volume)
            for spec in env.volumes:
                await resources.remove_volume(self.engine, spec.name)
            await resources.remove_network(self.engine, env.network)

            self._initialized = False
