"""Shared test helpers for ethnode tests."""

from .builders import fast_policy, make_node_config
from .engine import FakeContainer, FakeEngine

__all__ = [
    "FakeContainer",
    "FakeEngine",
    "fast_policy",
    "make_node_config",
]
