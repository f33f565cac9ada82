# src/conduit/plugins/config_base.py
"""Base class for typed provider configurations.

Example usage:
    class HttpJobConfig(ProviderConfig):
        submit_url: str
        timeout_seconds: float = 30.0

    cfg = HttpJobConfig.from_dict(options)
"""

from typing import Any, Self

from pydantic import BaseModel, ValidationError


class ProviderConfigError(Exception):
    """Raised when provider configuration is invalid."""


class ProviderConfig(BaseModel):
    """Base class for typed provider configurations.

    Unknown fields are rejected so a misspelled option fails at startup
    instead of silently falling back to a default.
    """

    model_config = {"extra": "forbid", "frozen": True}

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> Self:
        """Create config from dict with clear error on validation failure.

        Raises:
            ProviderConfigError: If configuration is invalid.
        """
        if not isinstance(config, dict):
            raise ProviderConfigError(f"Invalid configuration for {cls.__name__}: config must be a dict, got {type(config).__name__}.")
        try:
            return cls.model_validate(config)
        except ValidationError as e:
            raise ProviderConfigError(f"Invalid configuration for {cls.__name__}: {e}") from e
