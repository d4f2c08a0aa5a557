"""
Deployment file loader.

A deployment is the shared environment plus the clients that run in it.
It is described in YAML:

    network: eth_network
    secret_volume: reth_jwt
    keep_data: false
    health:
      retry_interval: 1.0
      max_retries: 30
    api:
      port: 9650
    clients:
      - kind: reth
        readiness_marker: "Starting consensus engine"
      - kind: lighthouse
        upstream_endpoint: http://reth:8551
        ports:
          http: 5052
        extra_args: ["--checkpoint-sync-url=https://sync.example.org"]
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator, model_validator

from ethnode.api import ApiServerConfig
from ethnode.engine import RestartPolicy, VolumeSpec
from ethnode.environment import (
    DEFAULT_NETWORK,
    DEFAULT_SECRET_PATH,
    DEFAULT_SECRET_VOLUME,
    SharedEnvironment,
    validate_jwt_secret,
)
from ethnode.environment.secret import HELPER_IMAGE
from ethnode.node import HealthPolicy, NodeConfig, preset
from ethnode.types import ConfigModel


class VolumeEntry(ConfigModel):
    """A shared volume."""

    name: str
    driver: str = "local"
    driver_opts: dict[str, str] = Field(default_factory=dict)

    def to_spec(self) -> VolumeSpec:
        return VolumeSpec(self.name, self.driver, dict(self.driver_opts))


class HealthSettings(ConfigModel):
    """Readiness and supervision timing. See HealthPolicy."""

    retry_interval: float = Field(default=1.0, ge=0)
    max_retries: int = Field(default=30, ge=1)
    monitor_interval: float = Field(default=30.0, gt=0)
    log_tail: int = Field(default=50, ge=1)
    probe_timeout: float = Field(default=5.0, gt=0)

    def to_policy(self) -> HealthPolicy:
        return HealthPolicy(**self.model_dump())


class ApiSettings(ConfigModel):
    """Where the job API listens."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=9650, gt=0, lt=65536)

    def to_server_config(self) -> ApiServerConfig:
        return ApiServerConfig(host=self.host, port=self.port, enabled=self.enabled)


class ClientEntry(ConfigModel):
    """
    One client of the deployment.

    Starts from the preset for its kind; every other field overrides it.
    """

    kind: Literal["reth", "lighthouse", "nimbus"]
    """Client implementation, selecting the preset."""

    name: str | None = None
    image: str | None = None
    chain: str | None = None
    upstream_endpoint: str | None = None
    readiness_marker: str | None = None
    readiness_url: str | None = None
    restart_policy: RestartPolicy | None = None
    environment: dict[str, str] | None = None
    error_markers: list[str] | None = None

    ports: dict[str, int] = Field(default_factory=dict)
    """Port moves by symbolic name, e.g. {"http": 5053}."""

    data_volume: str | None = None
    """Name of the client's data volume, replacing the preset's."""

    extra_args: list[str] = Field(default_factory=list)
    """Arguments appended to the preset command."""

    def to_node_config(self, environment: SharedEnvironment) -> NodeConfig:
        """
        Build the node descriptor inside a shared environment.

        Raises:
            ValueError: If the resulting descriptor is invalid.
        """
        overrides: dict[str, Any] = self.model_dump(
            include={
                "name",
                "image",
                "chain",
                "upstream_endpoint",
                "readiness_marker",
                "readiness_url",
                "restart_policy",
                "environment",
                "error_markers",
            },
            exclude_none=True,
        )
        if self.data_volume is not None:
            overrides["data_volume"] = VolumeSpec(self.data_volume)

        config = preset(
            self.kind,
            network=environment.network,
            secret_volume=environment.secret_volume,
            secret_path=environment.secret_path,
            port_overrides=dict(self.ports),
            **overrides,
        )
        if self.extra_args:
            config = dataclasses.replace(config, command=config.command + tuple(self.extra_args))
        return config


class DeploymentConfig(ConfigModel):
    """A shared environment and the clients that run in it."""

    network: str = DEFAULT_NETWORK
    network_driver: str = "bridge"
    volumes: list[VolumeEntry] = Field(default_factory=list)
    secret_volume: str = DEFAULT_SECRET_VOLUME
    secret_path: str = DEFAULT_SECRET_PATH
    helper_image: str = HELPER_IMAGE

    jwt_secret: str | None = Field(default=None, repr=False)
    """Secret to write when the volume has none. Generated when omitted."""

    keep_data: bool = False
    """Stop containers on shutdown instead of removing them and their data volumes."""

    exit_on_failure: bool = True
    """Shut the deployment down when any node fails."""

    health: HealthSettings = Field(default_factory=HealthSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    clients: list[ClientEntry] = Field(min_length=1)

    @field_validator("jwt_secret")
    @classmethod
    def check_jwt_secret(cls, v: str | None) -> str | None:
        """Reject secrets that are not 32 bytes of hex."""
        return None if v is None else validate_jwt_secret(v)

    @model_validator(mode="after")
    def check_unique_names(self) -> DeploymentConfig:
        """Verify every client resolves to a distinct container name."""
        names = [config.name for config in self.to_node_configs()]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate client names: {duplicates}")
        return self

    def to_environment(self) -> SharedEnvironment:
        """Shared environment of the deployment."""
        return SharedEnvironment(
            network=self.network,
            network_driver=self.network_driver,
            volumes=tuple(volume.to_spec() for volume in self.volumes),
            secret_volume=self.secret_volume,
            secret_path=self.secret_path,
            helper_image=self.helper_image,
        )

    def to_node_configs(self) -> list[NodeConfig]:
        """Node descriptors of every client, in file order."""
        environment = self.to_environment()
        return [client.to_node_config(environment) for client in self.clients]

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> DeploymentConfig:
        """
        Load a deployment from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            pydantic.ValidationError: If the data fails validation.
        """
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, content: str) -> DeploymentConfig:
        """Load a deployment from a YAML string."""
        return cls.model_validate(yaml.safe_load(content))
