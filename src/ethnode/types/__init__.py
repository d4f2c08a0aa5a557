"""Reusable type definitions for ethnode."""

from .base import ConfigModel, StrictBaseModel
from .exceptions import (
    ContainerError,
    EngineError,
    EthnodeError,
    NodeUnhealthyError,
    NodeUnresponsiveError,
    ResourceConflictError,
    ResourceNotFoundError,
)

__all__ = [
    "ConfigModel",
    "StrictBaseModel",
    # Errors
    "EthnodeError",
    "EngineError",
    "ResourceNotFoundError",
    "ResourceConflictError",
    "ContainerError",
    "NodeUnresponsiveError",
    "NodeUnhealthyError",
]
