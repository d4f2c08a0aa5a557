"""
API server for node jobs and metrics.

Provides HTTP endpoints for:
- /ethnode/v0/health - Liveness of the supervisor itself
- /ethnode/v0/nodes - Status of every supervised node
- /ethnode/v0/nodes/{name}/status|health|logs - Per-node reports
- /ethnode/v0/nodes/{name}/restart|stop - Per-node actions (POST)
- /metrics - Prometheus metrics endpoint

Job responses carry a JobResult body. A job that failed for an expected
reason still answers 200 with success=false; HTTP errors are reserved for
unknown nodes and malformed requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError

from ethnode.jobs import JobResult, NodeJobs, RestartParams
from ethnode.metrics import generate_metrics
from ethnode.service import Supervisor

logger = logging.getLogger(__name__)

API_PREFIX = "/ethnode/v0"
"""Prefix of every versioned endpoint."""


async def _handle_health(_request: web.Request) -> web.Response:
    """Handle health check endpoint."""
    return web.json_response({"status": "healthy", "service": "ethnode-api"})


async def _handle_metrics(_request: web.Request) -> web.Response:
    """Handle Prometheus metrics endpoint."""
    return web.Response(
        body=generate_metrics(),
        headers={"Content-Type": CONTENT_TYPE_LATEST},
    )


def _result(result: JobResult) -> web.Response:
    return web.json_response(result.model_dump(mode="json"))


@dataclass(frozen=True, slots=True)
class ApiServerConfig:
    """Configuration for the API server."""

    host: str = "127.0.0.1"
    """Host address to bind to. Loopback by default since the API can stop nodes."""

    port: int = 9650
    """Port to listen on."""

    enabled: bool = True
    """Whether the API server is enabled."""


@dataclass(slots=True)
class ApiServer:
    """
    HTTP API over a running supervisor.

    Uses aiohttp to handle HTTP protocol details.
    """

    config: ApiServerConfig
    """Server configuration."""

    supervisor: Supervisor
    """Supervisor whose nodes the jobs act on."""

    _runner: web.AppRunner | None = field(default=None, init=False)
    """The aiohttp application runner."""

    _site: web.TCPSite | None = field(default=None, init=False)
    """The TCP site for the server."""

    def build_app(self) -> web.Application:
        """Create the application with every route registered."""
        app = web.Application()
        app.add_routes(
            [
                web.get(f"{API_PREFIX}/health", _handle_health),
                web.get("/metrics", _handle_metrics),
                web.get(f"{API_PREFIX}/nodes", self._handle_nodes),
                web.get(f"{API_PREFIX}/nodes/{{name}}/status", self._handle_status),
                web.get(f"{API_PREFIX}/nodes/{{name}}/health", self._handle_node_health),
                web.get(f"{API_PREFIX}/nodes/{{name}}/logs", self._handle_logs),
                web.post(f"{API_PREFIX}/nodes/{{name}}/restart", self._handle_restart),
                web.post(f"{API_PREFIX}/nodes/{{name}}/stop", self._handle_stop),
            ]
        )
        return app

    async def start(self) -> None:
        """Start the API server in the background."""
        if not self.config.enabled:
            logger.info("API server is disabled")
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info("API server listening on %s:%d", self.config.host, self.config.port)

    async def stop(self) -> None:
        """Gracefully stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("API server stopped")

    def _jobs(self, request: web.Request) -> NodeJobs:
        name = request.match_info["name"]
        service = self.supervisor.service(name)
        if service is None:
            raise web.HTTPNotFound(reason=f"Unknown node {name}")
        return NodeJobs(service, on_restart=self.supervisor.notify)

    async def _handle_nodes(self, _request: web.Request) -> web.Response:
        """List every node with its status."""
        nodes = [
            service.manager.status() | {"supervised": service.is_running}
            for service in self.supervisor.services.values()
        ]
        return web.json_response({"nodes": nodes})

    async def _handle_status(self, request: web.Request) -> web.Response:
        return _result(await self._jobs(request).status())

    async def _handle_node_health(self, request: web.Request) -> web.Response:
        return _result(await self._jobs(request).health())

    async def _handle_logs(self, request: web.Request) -> web.Response:
        """
        Return recent log lines.

        Query parameter tail limits the line count (default 100).
        """
        jobs = self._jobs(request)
        raw_tail = request.query.get("tail")
        try:
            tail = None if raw_tail is None else int(raw_tail)
        except ValueError:
            raise web.HTTPBadRequest(reason="tail must be an integer") from None
        if tail is not None and tail < 1:
            raise web.HTTPBadRequest(reason="tail must be positive")
        return _result(await jobs.logs() if tail is None else await jobs.logs(tail))

    async def _handle_restart(self, request: web.Request) -> web.Response:
        """
        Restart a node.

        Request body (optional):
        {
            "clear_cache": <bool>,
            "new_config": "<yaml or json mapping>"
        }
        """
        jobs = self._jobs(request)
        body = await request.text()
        try:
            params = RestartParams.model_validate_json(body) if body.strip() else RestartParams()
        except ValidationError as exc:
            raise web.HTTPBadRequest(reason="Invalid restart parameters", text=str(exc)) from exc
        return _result(await jobs.restart(params))

    async def _handle_stop(self, request: web.Request) -> web.Response:
        return _result(await self._jobs(request).stop())

