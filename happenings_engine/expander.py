"""Occurrence expansion for happenings_engine.

Turns a RecurrenceDescriptor into ordered date keys inside a window. Pure:
no clock reads, no I/O, same input always gives the same output.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Optional, Union

from dateutil.rrule import FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from .core.config_manager import DEFAULT_LOOKAHEAD_DAYS, DEFAULT_MAX_OCCURRENCES_PER_EVENT
from .core.timezone_utils import DateLike, add_days, format_date_key, to_date_key, to_local_date
from .exceptions import InvalidRecurrenceRule, InvalidWindow
from .models import EventDefinition, RecurrenceDescriptor, RecurrenceKind
from .recurrence import interpret

logger = logging.getLogger(__name__)

# Indexed by Python weekday numbering (0=Monday)
RRULE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


def _midnight(value: date) -> datetime:
    return datetime.combine(value, time.min)


def build_rrule(descriptor: RecurrenceDescriptor) -> Optional[rrule]:
    """Build a dateutil rrule for weekly, biweekly and monthly-ordinal series.

    The rule starts at the anchor, so COUNT is counted from there and nothing
    earlier is produced. Dates where several ordinals coincide (5th and last)
    come out once. One-time and custom series have no rule and return None.
    """
    kind = descriptor.kind
    if kind not in (RecurrenceKind.WEEKLY, RecurrenceKind.BIWEEKLY, RecurrenceKind.MONTHLY_ORDINAL):
        return None

    bounds: dict[str, Any] = {
        "dtstart": _midnight(descriptor.anchor_date),
        "count": descriptor.max_occurrences,
    }
    # dateutil deprecates COUNT together with UNTIL; iter_series applies end_date itself
    if descriptor.end_date is not None and descriptor.max_occurrences is None:
        bounds["until"] = _midnight(descriptor.end_date)

    day = RRULE_WEEKDAYS[descriptor.weekday]
    if kind == RecurrenceKind.MONTHLY_ORDINAL:
        return rrule(MONTHLY, byweekday=[day(ordinal) for ordinal in descriptor.ordinals], **bounds)
    return rrule(WEEKLY, interval=descriptor.interval_days // 7, byweekday=day, **bounds)


def iter_series(descriptor: RecurrenceDescriptor, start: date) -> Iterator[date]:
    """Yield series dates on or after ``start`` in ascending order.

    Respects the series bounds (``end_date``, ``max_occurrences``) but not the
    window end; callers stop consuming.
    """
    rule = build_rrule(descriptor)
    if rule is not None:
        dates: Iterator[date] = (value.date() for value in rule.xafter(_midnight(start), inc=True))
    elif descriptor.kind == RecurrenceKind.CUSTOM:
        custom = sorted(set(descriptor.custom_dates))
        if descriptor.max_occurrences is not None:
            custom = custom[: descriptor.max_occurrences]
        dates = iter(custom)
    else:
        dates = iter((descriptor.anchor_date,))

    for value in dates:
        if descriptor.end_date is not None and value > descriptor.end_date:
            return
        if value >= start:
            yield value


def expand(
    source: Union[EventDefinition, RecurrenceDescriptor],
    window_start: DateLike,
    window_end: DateLike,
    cap: Optional[int] = None,
    tz_name: Optional[str] = None,
) -> list[str]:
    """Expand a series into date keys within an inclusive window.

    Args:
        source: Event definition (interpreted here) or an already built descriptor
        window_start: First day of the window (date, datetime or string)
        window_end: Last day of the window, inclusive
        cap: Maximum number of keys returned; truncates silently (default 40)
        tz_name: Canonical timezone for datetime bounds (defaults to the
            definition's timezone, else America/Denver)

    Returns:
        Ascending, deduplicated YYYY-MM-DD keys

    Raises:
        InvalidWindow: If window_end is before window_start
        InvalidRecurrenceRule: If the definition cannot be interpreted
    """
    if isinstance(source, EventDefinition):
        tz_name = tz_name or source.timezone
        descriptor = interpret(source)
    else:
        descriptor = source

    start = to_local_date(window_start, tz_name)
    end = to_local_date(window_end, tz_name)
    if end < start:
        raise InvalidWindow(f"Window end {format_date_key(end)} is before start {format_date_key(start)}")

    if cap is None:
        cap = DEFAULT_MAX_OCCURRENCES_PER_EVENT
    if cap <= 0:
        logger.debug("Non-positive cap %s, nothing to expand", cap)
        return []

    keys: list[str] = []
    previous: Optional[date] = None
    for value in iter_series(descriptor, start):
        if value > end:
            break
        if value < start or value == previous:
            continue
        previous = value
        keys.append(format_date_key(value))
        if len(keys) >= cap:
            logger.debug("Expansion capped at %d occurrences", cap)
            break

    return keys


@dataclass(frozen=True)
class NextOccurrence:
    """Next upcoming occurrence of a series relative to a given day."""

    date_key: Optional[str]
    is_today: bool = False
    is_tomorrow: bool = False
    is_confident: bool = False


def compute_next_occurrence(
    definition: EventDefinition,
    today: DateLike,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
) -> NextOccurrence:
    """Find the next occurrence on or after ``today``.

    One-time events always report their anchor date. Recurring series with no
    occurrence in the lookahead, or whose recurrence cannot be interpreted,
    come back with ``is_confident=False`` and no date ("schedule unknown").
    """
    today_key_value = to_date_key(today, definition.timezone)
    tomorrow_key = add_days(today_key_value, 1)

    try:
        descriptor = interpret(definition)
    except InvalidRecurrenceRule as e:
        logger.debug("Schedule unknown for event %s: %s", definition.id, e)
        return NextOccurrence(date_key=None)

    if descriptor.kind == RecurrenceKind.ONE_TIME:
        date_key = format_date_key(descriptor.anchor_date)
    else:
        keys = expand(descriptor, today_key_value, add_days(today_key_value, lookahead_days), cap=1)
        if not keys:
            return NextOccurrence(date_key=None)
        date_key = keys[0]

    return NextOccurrence(
        date_key=date_key,
        is_today=date_key == today_key_value,
        is_tomorrow=date_key == tomorrow_key,
        is_confident=True,
    )
