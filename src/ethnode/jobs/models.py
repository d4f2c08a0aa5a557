"""Job parameters and results."""

from __future__ import annotations

from typing import Any

import yaml
from pydantic import Field

from ethnode.engine import RestartPolicy
from ethnode.types import ConfigModel, StrictBaseModel


class RestartParams(StrictBaseModel):
    """Parameters of the restart job."""

    clear_cache: bool = False
    """Remove the container and its data volume before restarting."""

    new_config: str | None = None
    """YAML or JSON mapping of descriptor fields to change, see NodeOverrides."""


class NodeOverrides(ConfigModel):
    """Descriptor fields a restart may change."""

    image: str | None = None
    command: list[str] | None = None
    readiness_marker: str | None = None
    readiness_url: str | None = None
    restart_policy: RestartPolicy | None = None
    environment: dict[str, str] | None = None

    @classmethod
    def parse(cls, text: str) -> NodeOverrides:
        """
        Parse overrides from YAML or JSON text.

        Raises:
            ValueError: If the text is not a mapping of known fields.
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("Config must be a mapping")
        return cls.model_validate(data)

    def changes(self) -> dict[str, Any]:
        """Fields that were set, ready for dataclasses.replace."""
        return self.model_dump(exclude_none=True)


class JobResult(ConfigModel):
    """Outcome of a job."""

    success: bool
    message: str
    data: dict[str, Any] | None = Field(default=None)
