"""Container spec construction from a node descriptor."""

from __future__ import annotations

from ethnode.engine import ContainerSpec

from .config import NodeConfig

NODE_LABEL = "ethnode.node"
"""Label that marks containers created by ethnode, valued with the node name."""


def build_binds(config: NodeConfig) -> tuple[str, ...]:
    """
    Volume binds in engine notation.

    The data volume is mounted read-write at the data directory.
    The shared secret volume is mounted read-only at the secret's directory,
    never at the secret file itself.
    """
    binds = []
    if config.data_volume is not None:
        binds.append(f"{config.data_volume.name}:{config.data_dir}")
    if config.secret_volume is not None:
        binds.append(f"{config.secret_volume}:{config.secret_dir}:ro")
    return tuple(binds)


def build_port_bindings(config: NodeConfig) -> dict[str, list[tuple[str, int]]]:
    """Published ports keyed by "<port>/<proto>"."""
    bindings: dict[str, list[tuple[str, int]]] = {}
    for port in sorted(config.ports, key=lambda p: (p.container_port, p.protocol)):
        if not port.publish:
            continue
        assert port.host_port is not None
        bindings.setdefault(port.key, []).append((port.host_ip, port.host_port))
    return bindings


def build_container_spec(config: NodeConfig) -> ContainerSpec:
    """
    Translate a node descriptor into an engine creation spec.

    Args:
        config: Node descriptor.

    Returns:
        Spec with image, rendered command, binds, published ports,
        network attachment with aliases, and restart policy.
    """
    return ContainerSpec(
        image=config.image,
        name=config.name,
        command=config.render_command(),
        user=config.user,
        environment=dict(config.environment),
        binds=build_binds(config),
        port_bindings=build_port_bindings(config),
        network=config.network,
        aliases=config.aliases,
        restart_policy=config.restart_policy,
        privileged=config.privileged,
        platform=config.platform,
        labels={NODE_LABEL: config.name},
    )
