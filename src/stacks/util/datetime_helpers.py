"""Date helpers. Everything circulation stores or compares is an aware
datetime in UTC.
"""

import datetime
from typing import overload

import pytz


def datetime_utc(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    microsecond: int = 0,
) -> datetime.datetime:
    return datetime.datetime(
        year, month, day, hour, minute, second, microsecond, tzinfo=pytz.UTC
    )


def from_timestamp(ts: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ts, tz=pytz.UTC)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=pytz.UTC)


@overload
def to_utc(dt: datetime.datetime) -> datetime.datetime: ...


@overload
def to_utc(dt: None) -> None: ...


@overload
def to_utc(dt: datetime.datetime | None) -> datetime.datetime | None: ...


def to_utc(dt: datetime.datetime | None) -> datetime.datetime | None:
    """Convert `dt` to UTC. A naive value is taken to already be UTC,
    which is how SQLite hands our timestamps back.
    """
    match dt:
        case None:
            return None
        case datetime.datetime(tzinfo=None):
            return dt.replace(tzinfo=pytz.UTC)
        case _:
            return dt.astimezone(pytz.UTC)


def strptime_utc(date_string: str, format: str) -> datetime.datetime:
    """Parse a UTC time written without an offset.

    :raise ValueError: If `format` asks for an offset or zone name.
    """
    if any(directive in format for directive in ("%z", "%Z")):
        raise ValueError(f"Cannot use strptime_utc with timezone-aware format {format}")
    return datetime.datetime.strptime(date_string, format).replace(tzinfo=pytz.UTC)


def start_of_day(dt: datetime.datetime) -> datetime.datetime:
    """Midnight UTC on the UTC calendar day containing `dt`."""
    return to_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)
