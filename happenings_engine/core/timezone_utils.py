"""Canonical timezone and date key utilities for happenings_engine.

Every occurrence is identified by a date key (``YYYY-MM-DD``) in the
platform's canonical timezone. Nothing in the engine reads the wall clock:
callers pass ``now`` explicitly and convert it with :func:`today_key`.
"""

from __future__ import annotations

import datetime
import logging
import re
import zoneinfo
from functools import lru_cache
from typing import Union

from dateutil import parser as date_parser

from happenings_engine.exceptions import InvalidDateKey

logger = logging.getLogger(__name__)

# Canonical timezone for all date keys
DEFAULT_TIMEZONE = "America/Denver"

DATE_KEY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

# Obsolete or shorthand names seen in imported venue data
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Mountain": "America/Denver",
    "US/Pacific": "America/Los_Angeles",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "US/Arizona": "America/Phoenix",
    "MST7MDT": "America/Denver",
    "PST8PDT": "America/Los_Angeles",
    "CST6CDT": "America/Chicago",
    "EST5EDT": "America/New_York",
    "GMT": "UTC",
    "Etc/UTC": "UTC",
    "Etc/GMT": "UTC",
    "Zulu": "UTC",
}

DateLike = Union[datetime.date, datetime.datetime, str]


def resolve_timezone_alias(tz_name: str) -> str:
    """Resolve timezone alias to canonical IANA timezone identifier.

    Examples:
        >>> resolve_timezone_alias("US/Mountain")
        'America/Denver'
        >>> resolve_timezone_alias("America/Denver")
        'America/Denver'
    """
    return TZ_ALIAS_MAP.get(tz_name, tz_name)


def normalize_timezone_name(tz_str: str | None, fallback: str = DEFAULT_TIMEZONE) -> str:
    """Return a valid IANA timezone name, falling back when ``tz_str`` is unusable.

    Args:
        tz_str: Timezone name or alias
        fallback: Timezone used when tz_str is empty or unknown

    Returns:
        Valid IANA timezone identifier
    """
    if not tz_str:
        return fallback

    resolved = resolve_timezone_alias(tz_str.strip())
    try:
        zoneinfo.ZoneInfo(resolved)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to %r", tz_str, fallback)
        return fallback
    return resolved


@lru_cache(maxsize=20)
def get_zone(tz_name: str | None = None) -> zoneinfo.ZoneInfo:
    """Return the ZoneInfo for ``tz_name`` (canonical timezone when omitted)."""
    return zoneinfo.ZoneInfo(normalize_timezone_name(tz_name))


def is_valid_date_key(date_key: object) -> bool:
    """Check that ``date_key`` is a real calendar date in strict YYYY-MM-DD form."""
    if not isinstance(date_key, str) or not DATE_KEY_REGEX.match(date_key):
        return False
    try:
        datetime.date.fromisoformat(date_key)
    except ValueError:
        return False
    return True


def parse_date_key(date_key: str) -> datetime.date:
    """Parse a strict YYYY-MM-DD date key.

    Raises:
        InvalidDateKey: If the key is malformed or not a real date
    """
    if not is_valid_date_key(date_key):
        raise InvalidDateKey(f"Invalid date key {date_key!r}. Expected YYYY-MM-DD.")
    return datetime.date.fromisoformat(date_key)


def format_date_key(value: datetime.date) -> str:
    """Format a calendar date as a YYYY-MM-DD date key."""
    return value.strftime("%Y-%m-%d")


def add_days(date_key: str, days: int) -> str:
    """Add ``days`` to a date key.

    Pure calendar arithmetic on dates, so DST transitions cannot shift the result.
    """
    return format_date_key(parse_date_key(date_key) + datetime.timedelta(days=days))


def to_local_date(value: DateLike, tz_name: str | None = None) -> datetime.date:
    """Normalize a date, datetime or string to a calendar date in the canonical timezone.

    - ``date``: used as-is (already a calendar date)
    - aware ``datetime``: converted to the canonical timezone first
    - naive ``datetime``: assumed to be UTC
    - ``str``: a strict date key, or an ISO 8601 timestamp parsed with dateutil

    Raises:
        InvalidDateKey: If a string cannot be parsed
    """
    if isinstance(value, datetime.datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)
        return aware.astimezone(get_zone(tz_name)).date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if DATE_KEY_REGEX.match(text):
            return parse_date_key(text)
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError) as e:
            raise InvalidDateKey(f"Cannot interpret {value!r} as a date") from e
        return to_local_date(parsed, tz_name)
    raise InvalidDateKey(f"Unsupported date value {value!r}")


def to_date_key(value: DateLike, tz_name: str | None = None) -> str:
    """Normalize any supported date value to a canonical-timezone date key."""
    return format_date_key(to_local_date(value, tz_name))


def today_key(now: datetime.datetime, tz_name: str | None = None) -> str:
    """Return today's date key in the canonical timezone.

    ``now`` is the caller's single per-request clock reading. A naive value is
    treated as UTC, never as server local time.
    """
    return to_date_key(now, tz_name)


def weekday_name(value: datetime.date) -> str:
    """Return the English weekday name for a date ("Monday".."Sunday")."""
    return WEEKDAY_NAMES[value.weekday()]
