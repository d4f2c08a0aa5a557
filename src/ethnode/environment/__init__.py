"""
Shared deployment environment: network, volumes and the engine-API secret.

Provisioned once per deployment, before any node is created.
"""

from .initializer import (
    DEFAULT_NETWORK,
    DEFAULT_SECRET_PATH,
    DEFAULT_SECRET_VOLUME,
    EnvironmentInitializer,
    SharedEnvironment,
)
from .resources import ensure_network, ensure_volume, remove_network, remove_volume
from .secret import generate_jwt_secret, run_helper, validate_jwt_secret, write_secret

__all__ = [
    "DEFAULT_NETWORK",
    "DEFAULT_SECRET_PATH",
    "DEFAULT_SECRET_VOLUME",
    "EnvironmentInitializer",
    "SharedEnvironment",
    "ensure_network",
    "ensure_volume",
    "generate_jwt_secret",
    "remove_network",
    "remove_volume",
    "run_helper",
    "validate_jwt_secret",
    "write_secret",
]
