"""Background supervision of nodes."""

from .background import NodeService
from .supervisor import Supervisor

__all__ = [
    "NodeService",
    "Supervisor",
]
