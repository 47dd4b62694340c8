from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator

from stacks.util.datetime_helpers import to_utc


class UtcDateTime(TypeDecorator[datetime.datetime]):
    """A timezone-aware datetime that always comes back from the database in UTC.

    SQLite has no native timezone support, so values are normalized to UTC
    and stored naive there. Every other backend gets a `timestamptz` column.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: datetime.datetime | None, dialect: Dialect
    ) -> datetime.datetime | None:
        if value is None:
            return None
        value = to_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: Any | None, dialect: Dialect
    ) -> datetime.datetime | None:
        return to_utc(value)
