"""
Shared pytest fixtures for all ethnode tests.

Provides an in-memory engine and a manager wired to it.
"""

from __future__ import annotations

import pytest

from ethnode.node import NodeConfig, NodeLifecycleManager
from tests.ethnode.helpers import FakeEngine, fast_policy, make_node_config


@pytest.fixture
def engine() -> FakeEngine:
    """In-memory engine with the test image already present."""
    return FakeEngine(images={"example/reth:test"})


@pytest.fixture
def node_config() -> NodeConfig:
    """Descriptor of a small execution client."""
    return make_node_config()


@pytest.fixture
def manager(engine: FakeEngine, node_config: NodeConfig) -> NodeLifecycleManager:
    """Manager of the test node with fast timing."""
    return NodeLifecycleManager(engine=engine, config=node_config, policy=fast_policy())
