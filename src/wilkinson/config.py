"""Parser configuration."""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from .families import DEFAULT_FAMILY, is_known


class ParserConfig(BaseModel):
    """Settings shared by every build.

    Example YAML:

        default_family: poisson
        separator: "."
        intercept_name: Intercept
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    default_family: str = DEFAULT_FAMILY
    separator: str = "_"
    intercept_name: str = "intercept"

    @field_validator("default_family")
    @classmethod
    def _known_family(cls, value: str) -> str:
        if not is_known(value):
            raise ValueError(f"unknown family: {value}")
        return value

    @field_validator("separator", "intercept_name")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ParserConfig":
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})
