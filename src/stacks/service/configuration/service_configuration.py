from __future__ import annotations

from typing import Any

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from stacks.core.config import CannotLoadConfiguration


class ServiceConfiguration(BaseSettings):
    """Settings for one service, read from the environment.

    Subclasses declare their settings as pydantic fields and give
    themselves a distinct `env_prefix`, e.g. `STACKS_CIRCULATION_`.
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKS_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
    )

    def __init__(self, *args: Any, **kwargs: Any):
        try:
            super().__init__(*args, **kwargs)
        except ValidationError as e:
            problems = "\n".join(
                f"  {self._env_var_for(error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise CannotLoadConfiguration(
                f"Error loading settings from environment:\n{problems}"
            ) from e

    @classmethod
    def _env_var_for(cls, location: tuple[int | str, ...]) -> str:
        """The environment variable a validation error location refers to."""
        if not location:
            return "(settings)"
        field, *rest = (str(part) for part in location)
        if field in cls.model_fields:
            field = f"{cls.model_config.get('env_prefix', '')}{field}"
        delimiter = cls.model_config.get("env_nested_delimiter") or "__"
        return delimiter.join(part.upper() for part in (field, *rest))
