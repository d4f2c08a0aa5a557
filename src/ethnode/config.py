"""
Global configuration for ethnode.

This module contains environment-specific settings that apply across all packages.
"""

import os

_SUPPORTED_ETHNODE_ENVS: list[str] = ["prod", "test"]

ETHNODE_ENV = os.environ.get("ETHNODE_ENV", "prod").lower()
"""The environment flag ('prod' or 'test'). Defaults to 'prod'."""

if ETHNODE_ENV not in _SUPPORTED_ETHNODE_ENVS:
    raise ValueError(
        f"Invalid ETHNODE_ENV environment variable: '{ETHNODE_ENV}'. "
        f"Supported values: {_SUPPORTED_ETHNODE_ENVS}"
    )

DOCKER_TIMEOUT = float(os.environ.get("ETHNODE_DOCKER_TIMEOUT", "120"))
"""Seconds the docker SDK waits on a single API call."""

STOP_TIMEOUT = int(os.environ.get("ETHNODE_STOP_TIMEOUT", "10"))
"""Seconds the engine waits for a container to exit before killing it."""
