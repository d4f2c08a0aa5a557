"""
API module for node jobs and metrics.

Provides HTTP endpoints for:
- /ethnode/v0/nodes/{name}/... - Run jobs on a supervised node
- /ethnode/v0/health - Health check endpoint
- /metrics - Prometheus metrics

Also provides a client used by the command line:
- ApiClient: Run jobs against a running supervisor
"""

from .client import DEFAULT_API_URL, ApiClient, ApiClientError
from .server import API_PREFIX, ApiServer, ApiServerConfig

__all__ = [
    "API_PREFIX",
    "ApiClient",
    "ApiClientError",
    "ApiServer",
    "ApiServerConfig",
    "DEFAULT_API_URL",
]
