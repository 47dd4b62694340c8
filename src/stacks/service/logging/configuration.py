from __future__ import annotations

import logging
from enum import StrEnum, auto
from typing import Any

from pydantic import field_validator
from pydantic_settings import SettingsConfigDict

from stacks.service.configuration.service_configuration import ServiceConfiguration


class LogLevel(StrEnum):
    """Log levels whose values are the names the `logging` module uses,
    so a member can be passed straight to it.
    """

    @staticmethod
    def _generate_next_value_(
        name: str, start: int, count: int, last_values: list[str]
    ) -> str:
        return name.upper()

    debug = auto()
    info = auto()
    warning = auto()
    error = auto()

    @property
    def levelno(self) -> int:
        return logging.getLevelNamesMapping()[self.value]

    @classmethod
    def from_level(cls, level: int | str) -> LogLevel:
        name = logging.getLevelName(level) if isinstance(level, int) else level
        try:
            return cls(str(name).upper())
        except ValueError:
            raise ValueError(f"'{level}' is not a valid LogLevel") from None


class LoggingConfiguration(ServiceConfiguration):
    level: LogLevel = LogLevel.info
    # Used for the chattier libraries, see `setup_logging`.
    verbose_level: LogLevel = LogLevel.warning

    # One JSON document per line. Turn off for readable logs when
    # running locally.
    json: bool = True

    @field_validator("level", "verbose_level", mode="before")
    @classmethod
    def parse_level(cls, v: Any) -> Any:
        # Accept "debug", "DEBUG" or 10 alike.
        if isinstance(v, (int, str)) and not isinstance(v, LogLevel):
            return LogLevel.from_level(v)
        return v

    model_config = SettingsConfigDict(env_prefix="STACKS_LOG_")
