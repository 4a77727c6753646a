"""
Base Configuration Model.

Every configuration section derives from ``BaseConfig``: frozen, tolerant
of unknown keys, and with ``${VAR}`` references expanded before
validation so sections built in code behave like sections loaded from YAML.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from ..env import expand_tree


class BaseConfig(BaseModel):
    """
    Base configuration model.

    Unset variables without a default expand to an empty string.

    Example:
        >>> class FollowerSection(BaseConfig):
        ...     address: str = "${FOLLOWER_ADDRESS:paper}"
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
    )

    @model_validator(mode="before")
    @classmethod
    def expand_environment(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return expand_tree(data, missing="")
        return data
