"""
Client presets.

Each preset is a NodeConfig factory for one client implementation. They
differ only in data: image, ports, command templates. Callers override any
field by keyword, e.g. lighthouse(upstream_endpoint="http://geth:8551").

Default topology
----------------
- reth (execution) joins the shared network as "reth" and serves the
  engine API on 8551 to other containers only.
- lighthouse or nimbus (consensus) reach it at http://reth:8551 and read
  the shared JWT secret from the same volume.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Any, Final

from ethnode.engine import RestartPolicy, VolumeSpec

from .config import NodeConfig, PortBinding

RETH_IMAGE: Final = "ghcr.io/paradigmxyz/reth:latest"
LIGHTHOUSE_IMAGE: Final = "sigp/lighthouse:latest"
NIMBUS_IMAGE: Final = "statusim/nimbus-eth2:amd64-latest"

DEFAULT_UPSTREAM: Final = "http://reth:8551"
"""Engine API endpoint consensus clients use by default."""

_RPC_APIS: Final = "debug,eth,net,trace,txpool,web3,rpc,reth,ots"


def _build(defaults: dict[str, Any], overrides: dict[str, Any]) -> NodeConfig:
    """
    Merge overrides into preset defaults.

    Port overrides may be given as {name: host_port} to move a published
    port without restating the whole binding.
    """
    port_overrides = overrides.pop("port_overrides", None) or {}
    config = NodeConfig(**(defaults | overrides))
    if not port_overrides:
        return config

    unknown = set(port_overrides) - set(config.port_map)
    if unknown:
        raise ValueError(f"Unknown ports for {config.name}: {sorted(unknown)}")

    # Moving a port moves both sides, so templates and bindings stay in step.
    ports = frozenset(
        dataclasses.replace(port, container_port=port_overrides[port.name], host_port=None)
        if port.name in port_overrides
        else port
        for port in config.ports
    )
    return dataclasses.replace(config, ports=ports)


def reth(**overrides: Any) -> NodeConfig:
    """Reth execution client."""
    defaults: dict[str, Any] = {
        "name": "reth",
        "image": RETH_IMAGE,
        "ports": frozenset(
            {
                PortBinding("http", 8543, host_ip="127.0.0.1"),
                PortBinding("ws", 8544, host_ip="127.0.0.1"),
                PortBinding("p2p", 30304),
                PortBinding("discovery", 30304, protocol="udp"),
                PortBinding("auth", 8551, publish=False),
            }
        ),
        "data_volume": VolumeSpec("reth_data"),
        "command": (
            "node",
            "--chain={chain}",
            "--datadir={data_dir}",
            "--authrpc.jwtsecret={secret_path}",
            "--authrpc.addr=0.0.0.0",
            "--authrpc.port={ports[auth]}",
            "--port={ports[p2p]}",
            "--discovery.port={ports[discovery]}",
            "--http",
            f"--http.api={_RPC_APIS}",
            "--http.addr=0.0.0.0",
            "--http.port={ports[http]}",
            "--http.corsdomain=*",
            "--ws",
            f"--ws.api={_RPC_APIS}",
            "--ws.addr=0.0.0.0",
            "--ws.port={ports[ws]}",
            "--ws.origins=*",
        ),
    }
    return _build(defaults, overrides)


def lighthouse(**overrides: Any) -> NodeConfig:
    """Lighthouse consensus client (beacon node)."""
    defaults: dict[str, Any] = {
        "name": "lighthouse",
        "image": LIGHTHOUSE_IMAGE,
        "user": "root",
        "privileged": True,
        "platform": "linux/amd64",
        "restart_policy": RestartPolicy.UNLESS_STOPPED,
        "upstream_endpoint": DEFAULT_UPSTREAM,
        "ports": frozenset(
            {
                PortBinding("p2p", 9000),
                PortBinding("p2p_udp", 9000, protocol="udp"),
                PortBinding("http", 5052, host_ip="127.0.0.1"),
                PortBinding("metrics", 5054, host_ip="127.0.0.1"),
            }
        ),
        "data_volume": VolumeSpec("lighthouse_data"),
        "command": (
            "lighthouse",
            "beacon",
            "--network={chain}",
            "--datadir={data_dir}",
            "--execution-endpoint",
            "{upstream_endpoint}",
            "--execution-jwt",
            "{secret_path}",
            "--port={ports[p2p]}",
            "--http",
            "--http-address=0.0.0.0",
            "--http-port={ports[http]}",
            "--metrics",
            "--metrics-address=0.0.0.0",
            "--metrics-port={ports[metrics]}",
            "--disable-deposit-contract-sync",
        ),
    }
    return _build(defaults, overrides)


def nimbus(**overrides: Any) -> NodeConfig:
    """Nimbus consensus client (beacon node)."""
    defaults: dict[str, Any] = {
        "name": "nimbus-eth2",
        "image": NIMBUS_IMAGE,
        "user": "root",
        "privileged": True,
        "platform": "linux/amd64",
        "aliases": ("nimbus",),
        "upstream_endpoint": DEFAULT_UPSTREAM,
        "ports": frozenset(
            {
                PortBinding("p2p", 9000),
                PortBinding("p2p_udp", 9000, protocol="udp"),
                PortBinding("rest", 5052, host_ip="127.0.0.1"),
                PortBinding("metrics", 8008, host_ip="127.0.0.1"),
            }
        ),
        "data_volume": VolumeSpec("nimbus_data"),
        # The image's entrypoint is the beacon node binary; only flags follow.
        "command": (
            "--network={chain}",
            "--data-dir={data_dir}",
            "--el={upstream_endpoint}",
            "--jwt-secret={secret_path}",
            "--tcp-port={ports[p2p]}",
            "--udp-port={ports[p2p_udp]}",
            "--rest",
            "--rest-address=0.0.0.0",
            "--rest-port={ports[rest]}",
            "--metrics",
            "--metrics-address=0.0.0.0",
            "--metrics-port={ports[metrics]}",
            "--enr-auto-update=true",
            "--log-level=info",
            "--non-interactive=true",
        ),
    }
    return _build(defaults, overrides)


CLIENT_PRESETS: Final[dict[str, Callable[..., NodeConfig]]] = {
    "reth": reth,
    "lighthouse": lighthouse,
    "nimbus": nimbus,
}
"""Preset factories by client kind."""


def preset(kind: str, **overrides: Any) -> NodeConfig:
    """
    Build a NodeConfig for a client kind.

    Raises:
        ValueError: If the kind is unknown.
    """
    try:
        factory = CLIENT_PRESETS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown client kind {kind!r}. Supported: {sorted(CLIENT_PRESETS)}"
        ) from None
    return factory(**overrides)
