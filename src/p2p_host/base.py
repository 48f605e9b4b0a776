"""Reusable, strict base models for runtime settings."""

from pydantic import BaseModel, ConfigDict


class StrictBaseModel(BaseModel):
    """A strict, immutable pydantic base model."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        strict=True,
        validate_default=True,
    )
