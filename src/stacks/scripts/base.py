from __future__ import annotations

import argparse
import datetime
import itertools
import logging
from collections.abc import Sequence
from functools import cached_property
from typing import Any

from sqlalchemy.orm import Session

from stacks.service.container import Services, container_instance
from stacks.sqlalchemy.session import production_session
from stacks.util.datetime_helpers import strptime_utc

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d")
TIME_SUFFIXES = ("", " %H:%M:%S")


class Script:
    """A command-line entry point with a database session and the
    service container.

    Subclasses set `name` and implement `arg_parser` and `do_run`.
    """

    def __init__(
        self, _db: Session | None = None, services: Services | None = None
    ) -> None:
        # Tests pass in their own session. Otherwise one is opened on first use.
        if _db is not None:
            self._session = _db
        self.services = services if services is not None else container_instance()
        # Sets up logging, among other things.
        self.services.init_resources()

    @cached_property
    def _db(self) -> Session:
        return getattr(self, "_session", None) or production_session(type(self))

    @property
    def script_name(self) -> str:
        return getattr(self, "name", type(self).__name__)

    @cached_property
    def log(self) -> logging.Logger:
        return logging.getLogger(self.script_name)

    @classmethod
    def arg_parser(cls) -> argparse.ArgumentParser:
        raise NotImplementedError()

    @classmethod
    def parse_command_line(
        cls, cmd_args: Sequence[str] | None = None
    ) -> argparse.Namespace:
        args, _ = cls.arg_parser().parse_known_args(cmd_args)
        return args

    @classmethod
    def parse_time(cls, time_string: str | None) -> datetime.datetime | None:
        """Parse a UTC date, with or without a time of day."""
        if not time_string:
            return None
        for date_format, suffix in itertools.product(DATE_FORMATS, TIME_SUFFIXES):
            try:
                return strptime_utc(time_string, date_format + suffix)
            except ValueError:
                pass
        raise ValueError(f"Could not parse time: {time_string}")

    def run(self, cmd_args: Sequence[str] | None = None) -> Any:
        try:
            return self.do_run(cmd_args)
        except Exception:
            self.log.exception("Fatal exception while running script")
            raise

    def do_run(self, cmd_args: Sequence[str] | None = None) -> Any:
        raise NotImplementedError()
