"""Reusable pydantic base models for ethnode."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict


class ConfigModel(BaseModel):
    """
    An immutable model for operator-supplied configuration.

    Unknown keys are rejected so typos in deployment files fail loudly.
    Coercion stays lax because YAML loaders produce lists where tuples are
    expected and strings where enums are expected.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        validate_default=True,
    )

    def copy(self: Self, **kwargs: Any) -> Self:
        """Create a copy of the model with the updated fields that are validated."""
        return self.__class__(**(self.model_dump(exclude_unset=True) | kwargs))


class StrictBaseModel(ConfigModel):
    """A strict, immutable pydantic base model for wire payloads."""

    model_config = ConfigModel.model_config | {"strict": True}
