"""
Node supervision.

A node is one client container: an execution client such as reth or a
consensus client such as lighthouse. NodeConfig describes it, and
NodeLifecycleManager drives it from creation to removal while probing
its health.
"""

from .clients import CLIENT_PRESETS, lighthouse, nimbus, preset, reth
from .config import DEFAULT_ERROR_MARKERS, NodeConfig, PortBinding
from .health import HealthPolicy, HealthState, evaluate_state, scan_logs
from .manager import NodeLifecycleManager, NodeState
from .spec import NODE_LABEL, build_container_spec

__all__ = [
    "CLIENT_PRESETS",
    "DEFAULT_ERROR_MARKERS",
    "HealthPolicy",
    "HealthState",
    "NODE_LABEL",
    "NodeConfig",
    "NodeLifecycleManager",
    "NodeState",
    "PortBinding",
    "build_container_spec",
    "evaluate_state",
    "lighthouse",
    "nimbus",
    "preset",
    "reth",
    "scan_logs",
]
