"""Recurrence interpretation for happenings_engine.

Single place where raw recurrence tokens are read. Both the expander and the
label path consume the ``RecurrenceDescriptor`` produced here, so a label can
never describe a schedule the expander does not generate.

Accepted tokens:
- ``""`` / ``none`` / ``one-time``: single occurrence on the anchor date
- ``weekly``, ``biweekly`` / ``every other week``
- ``monthly``: ordinal taken from the anchor's position in its month
- ordinals: ``1st``..``5th``, ``first``..``fifth``, ``last`` and combinations
  joined by ``/``, ``&``, ``,`` or ``and`` (``1st/3rd``, ``2nd and last``)
- ``custom``: explicit ``custom_dates``
- RFC 5545 RRULE strings limited to the modes above
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Optional

from dateutil import parser as date_parser

from .core.timezone_utils import WEEKDAY_NAMES, to_local_date
from .exceptions import AmbiguousOrdinal, InvalidDateKey, InvalidRecurrenceRule
from .models import LAST_ORDINAL, EventDefinition, RecurrenceDescriptor, RecurrenceKind

logger = logging.getLogger(__name__)

ORDINAL_WORD_TO_NUMBER: dict[str, int] = {
    "1st": 1,
    "2nd": 2,
    "3rd": 3,
    "4th": 4,
    "5th": 5,
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "last": LAST_ORDINAL,
}

# Canonical token for each ordinal; inverse of the numeric forms above
NUMBER_TO_ORDINAL: dict[int, str] = {
    1: "1st",
    2: "2nd",
    3: "3rd",
    4: "4th",
    5: "5th",
    LAST_ORDINAL: "last",
}

RRULE_DAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

ONE_TIME_TOKENS = frozenset({"", "none", "one-time", "once"})
WEEKLY_TOKENS = frozenset({"weekly", "every week"})
BIWEEKLY_TOKENS = frozenset({"biweekly", "every other week"})

_ORDINAL_SEPARATORS = re.compile(r"[/&,]|\band\b")
_BYDAY_PATTERN = re.compile(r"^([+-]?\d+)?(MO|TU|WE|TH|FR|SA|SU)$")
_DATE_ONLY_UNTIL = re.compile(r"^\d{8}$")


def ordinal_sort_key(ordinal: int) -> tuple[bool, int]:
    """Sort numeric ordinals ascending with "last" after all of them."""
    return (ordinal == LAST_ORDINAL, ordinal)


def _validate_ordinals(ordinals: list[int]) -> list[int]:
    for ordinal in ordinals:
        if ordinal not in NUMBER_TO_ORDINAL:
            raise AmbiguousOrdinal(f"Ordinal {ordinal} is outside 1st..5th/last")
    if len(set(ordinals)) != len(ordinals):
        raise AmbiguousOrdinal(f"Duplicate ordinals in {ordinals}")
    return sorted(ordinals, key=ordinal_sort_key)


def _is_rrule(token: str) -> bool:
    upper = token.upper()
    return upper.startswith("RRULE:") or "FREQ=" in upper


def parse_rrule(rrule_string: str) -> dict[str, Any]:
    """Parse an RRULE string into components.

    Args:
        rrule_string: RRULE string (e.g. "FREQ=MONTHLY;BYDAY=1TH,3TH")

    Returns:
        Dictionary with 'freq', 'interval', 'byday' (list of (ordinal, weekday)),
        and optionally 'count' and 'until' (raw string)

    Raises:
        InvalidRecurrenceRule: If the string is empty, malformed or lacks FREQ
    """
    if not rrule_string or not rrule_string.strip():
        raise InvalidRecurrenceRule("Empty RRULE string")

    body = re.sub(r"^RRULE:", "", rrule_string.strip(), flags=re.IGNORECASE)
    parsed: dict[str, Any] = {"interval": 1, "byday": []}

    try:
        for part in re.split(r"[;\n]+", body):
            if not part.strip():
                continue
            if "=" not in part:
                raise InvalidRecurrenceRule(f"Malformed RRULE component {part!r}")
            key, value = part.split("=", 1)
            key = key.strip().upper()
            value = value.strip()

            if key == "FREQ":
                parsed["freq"] = value.upper()
            elif key == "INTERVAL":
                parsed["interval"] = int(value)
            elif key == "COUNT":
                parsed["count"] = int(value)
            elif key == "UNTIL":
                parsed["until"] = value
            elif key == "BYDAY":
                for day_part in value.upper().split(","):
                    match = _BYDAY_PATTERN.match(day_part.strip())
                    if not match:
                        raise InvalidRecurrenceRule(f"Malformed BYDAY value {day_part!r}")
                    ordinal = int(match.group(1)) if match.group(1) else None
                    parsed["byday"].append((ordinal, RRULE_DAY_CODES.index(match.group(2))))
            elif key == "WKST":
                continue
            else:
                raise InvalidRecurrenceRule(f"Unsupported RRULE component {key}")
    except ValueError as e:
        raise InvalidRecurrenceRule(f"Invalid RRULE format: {rrule_string}") from e

    if not parsed.get("freq"):
        raise InvalidRecurrenceRule("RRULE missing required FREQ parameter")
    if parsed["interval"] < 1:
        raise InvalidRecurrenceRule(f"Invalid RRULE INTERVAL in {rrule_string}")
    if "count" in parsed and parsed["count"] < 1:
        raise InvalidRecurrenceRule(f"Invalid RRULE COUNT in {rrule_string}")
    return parsed


def parse_ordinals_from_rule(token: str) -> list[int]:
    """Extract monthly ordinals from a recurrence token.

    Accepts legacy ordinal tokens ("4th", "1st/3rd", "2nd and last") and
    monthly RRULE strings ("FREQ=MONTHLY;BYDAY=1TH,-1TH").

    Returns:
        Ordinals sorted ascending with last (-1) at the end

    Raises:
        InvalidRecurrenceRule: If the token is not an ordinal pattern
        AmbiguousOrdinal: If ordinals repeat, are out of range, or mix weekdays
    """
    if token is None or not token.strip():
        raise InvalidRecurrenceRule("Empty ordinal token")

    if _is_rrule(token):
        parsed = parse_rrule(token)
        if parsed["freq"] != "MONTHLY":
            raise InvalidRecurrenceRule(f"Not a monthly ordinal rule: {token!r}")
        ordinals, _weekday = _monthly_byday(parsed, token)
        if not ordinals:
            raise InvalidRecurrenceRule(f"Monthly RRULE without ordinals: {token!r}")
        return ordinals

    parts = [p.strip() for p in _ORDINAL_SEPARATORS.split(token.lower().strip()) if p.strip()]
    ordinals = []
    for part in parts:
        if part not in ORDINAL_WORD_TO_NUMBER:
            raise InvalidRecurrenceRule(f"Unknown ordinal {part!r} in {token!r}")
        ordinals.append(ORDINAL_WORD_TO_NUMBER[part])
    if not ordinals:
        raise InvalidRecurrenceRule(f"No ordinals in {token!r}")
    return _validate_ordinals(ordinals)


def build_rule_from_ordinals(ordinals: list[int], weekday: Optional[int] = None) -> str:
    """Build the canonical recurrence token for monthly ordinals.

    Without a weekday the legacy form is produced ("1st/3rd", "2nd/last"); the
    weekday then lives on the anchor date. With a weekday (0=Monday) an RRULE is
    produced ("FREQ=MONTHLY;BYDAY=1TH,3TH"). Exact inverse of
    :func:`parse_ordinals_from_rule` for canonical tokens.

    Raises:
        AmbiguousOrdinal: If ordinals are empty, repeated or out of range
    """
    if not ordinals:
        raise AmbiguousOrdinal("At least one ordinal is required")
    ordered = _validate_ordinals(list(ordinals))

    if weekday is None:
        return "/".join(NUMBER_TO_ORDINAL[o] for o in ordered)

    if weekday not in range(7):
        raise AmbiguousOrdinal(f"Weekday {weekday} is outside 0..6")
    day_code = RRULE_DAY_CODES[weekday]
    return "FREQ=MONTHLY;BYDAY=" + ",".join(f"{o}{day_code}" for o in ordered)


def ordinal_of(value: date) -> int:
    """Which occurrence of its weekday ``value`` is within its month (1..5)."""
    return (value.day - 1) // 7 + 1


def _monthly_byday(parsed: dict[str, Any], token: str) -> tuple[list[int], Optional[int]]:
    byday = parsed["byday"]
    weekdays = {weekday for _ordinal, weekday in byday}
    if len(weekdays) > 1:
        raise AmbiguousOrdinal(f"BYDAY mixes weekdays in {token!r}")
    ordinals = [ordinal for ordinal, _weekday in byday if ordinal is not None]
    if ordinals and len(ordinals) != len(byday):
        raise AmbiguousOrdinal(f"BYDAY mixes ordinal and plain weekdays in {token!r}")
    weekday = next(iter(weekdays)) if weekdays else None
    return _validate_ordinals(ordinals), weekday


def _check_cached_weekday(definition: EventDefinition) -> None:
    cached = definition.day_of_week
    if cached and cached.strip().lower() != definition.derived_day_of_week.lower():
        raise InvalidRecurrenceRule(
            f"Event {definition.id}: day_of_week {cached!r} disagrees with anchor "
            f"{definition.anchor_date.isoformat()} ({definition.derived_day_of_week})"
        )


def _series_bounds(
    definition: EventDefinition, count: Optional[int] = None, until: Optional[date] = None
) -> dict[str, Any]:
    max_occurrences = definition.max_occurrences
    if count is not None:
        max_occurrences = count if max_occurrences is None else min(max_occurrences, count)
    end_date = definition.recurrence_end_date
    if until is not None:
        end_date = until if end_date is None else min(end_date, until)
    return {
        "anchor_date": definition.anchor_date,
        "max_occurrences": max_occurrences,
        "end_date": end_date,
    }


def _parse_until(value: str, tz_name: str, token: str) -> date:
    try:
        # Date-only UNTIL is a calendar date, not midnight UTC
        if _DATE_ONLY_UNTIL.match(value):
            return date_parser.isoparse(value).date()
        return to_local_date(value, tz_name)
    except (ValueError, InvalidDateKey) as e:
        raise InvalidRecurrenceRule(f"Invalid RRULE UNTIL in {token!r}") from e


def _interpret_rrule(definition: EventDefinition, token: str) -> RecurrenceDescriptor:
    parsed = parse_rrule(token)
    until = _parse_until(parsed["until"], definition.timezone, token) if "until" in parsed else None
    bounds = _series_bounds(definition, parsed.get("count"), until)
    anchor_weekday = definition.anchor_date.weekday()
    freq = parsed["freq"]

    if freq == "WEEKLY":
        if parsed["interval"] not in (1, 2):
            raise InvalidRecurrenceRule(f"Unsupported weekly INTERVAL={parsed['interval']}")
        byday = parsed["byday"]
        if len(byday) > 1:
            raise InvalidRecurrenceRule(f"Weekly rule on several weekdays is not supported: {token!r}")
        if byday:
            ordinal, weekday = byday[0]
            if ordinal is not None:
                raise AmbiguousOrdinal(f"Weekly rule with ordinal BYDAY: {token!r}")
            if weekday != anchor_weekday:
                raise InvalidRecurrenceRule(
                    f"Event {definition.id}: BYDAY {RRULE_DAY_CODES[weekday]} disagrees with anchor weekday"
                )
        kind = RecurrenceKind.WEEKLY if parsed["interval"] == 1 else RecurrenceKind.BIWEEKLY
        return RecurrenceDescriptor(
            kind=kind, weekday=anchor_weekday, interval_days=7 * parsed["interval"], **bounds
        )

    if freq == "MONTHLY":
        if parsed["interval"] != 1:
            raise InvalidRecurrenceRule(f"Unsupported monthly INTERVAL={parsed['interval']}")
        ordinals, weekday = _monthly_byday(parsed, token)
        if weekday is not None and weekday != anchor_weekday:
            raise AmbiguousOrdinal(
                f"Event {definition.id}: BYDAY weekday {RRULE_DAY_CODES[weekday]} "
                f"conflicts with anchor weekday {RRULE_DAY_CODES[anchor_weekday]}"
            )
        if not ordinals:
            ordinals = [ordinal_of(definition.anchor_date)]
        return RecurrenceDescriptor(
            kind=RecurrenceKind.MONTHLY_ORDINAL,
            weekday=anchor_weekday,
            ordinals=tuple(ordinals),
            **bounds,
        )

    raise InvalidRecurrenceRule(f"Unsupported RRULE FREQ={freq}")


def interpret(definition: EventDefinition) -> RecurrenceDescriptor:
    """Parse a stored definition's recurrence fields into a descriptor.

    Args:
        definition: Event definition snapshot

    Returns:
        Closed RecurrenceDescriptor

    Raises:
        InvalidRecurrenceRule: On unknown or malformed tokens, empty custom dates,
            or a cached day_of_week that disagrees with the anchor
        AmbiguousOrdinal: On contradictory ordinal/weekday combinations
    """
    raw = definition.recurrence_rule or ""
    token = raw.strip().lower()

    if token == "custom":
        if not definition.custom_dates:
            raise InvalidRecurrenceRule(f"Event {definition.id}: custom series has no custom dates")
        return RecurrenceDescriptor(
            kind=RecurrenceKind.CUSTOM,
            custom_dates=definition.custom_dates,
            **_series_bounds(definition),
        )

    if token in ONE_TIME_TOKENS:
        return RecurrenceDescriptor(kind=RecurrenceKind.ONE_TIME, anchor_date=definition.anchor_date)

    _check_cached_weekday(definition)
    anchor_weekday = definition.anchor_date.weekday()
    bounds = _series_bounds(definition)

    if _is_rrule(raw):
        descriptor = _interpret_rrule(definition, raw)
    elif token in WEEKLY_TOKENS:
        descriptor = RecurrenceDescriptor(
            kind=RecurrenceKind.WEEKLY, weekday=anchor_weekday, interval_days=7, **bounds
        )
    elif token in BIWEEKLY_TOKENS:
        descriptor = RecurrenceDescriptor(
            kind=RecurrenceKind.BIWEEKLY, weekday=anchor_weekday, interval_days=14, **bounds
        )
    elif token == "monthly":
        descriptor = RecurrenceDescriptor(
            kind=RecurrenceKind.MONTHLY_ORDINAL,
            weekday=anchor_weekday,
            ordinals=(ordinal_of(definition.anchor_date),),
            **bounds,
        )
    else:
        descriptor = RecurrenceDescriptor(
            kind=RecurrenceKind.MONTHLY_ORDINAL,
            weekday=anchor_weekday,
            ordinals=tuple(parse_ordinals_from_rule(token)),
            **bounds,
        )

    logger.debug("Interpreted event %s rule %r as %s", definition.id, raw, descriptor.kind.value)
    return descriptor


def label(descriptor: RecurrenceDescriptor) -> str:
    """Human-readable schedule label.

    Examples: "Every Monday", "Every Other Saturday", "4th Saturday of the Month",
    "1st & 3rd Thursday of the Month", "Last Friday of the Month", "Specific Dates".
    """
    kind = descriptor.kind
    if kind == RecurrenceKind.ONE_TIME:
        return "One-time"
    if kind == RecurrenceKind.CUSTOM:
        return "Specific Dates"

    day_name = WEEKDAY_NAMES[descriptor.weekday]
    if kind == RecurrenceKind.WEEKLY:
        return f"Every {day_name}"
    if kind == RecurrenceKind.BIWEEKLY:
        return f"Every Other {day_name}"

    words = [NUMBER_TO_ORDINAL[o].capitalize() for o in descriptor.ordinals]
    return f"{' & '.join(words)} {day_name} of the Month"


def canonicalize_definition(definition: EventDefinition) -> EventDefinition:
    """Write-path normalization of a definition.

    Re-derives ``day_of_week`` from the anchor (cleared for custom series) and
    rewrites legacy ordinal tokens to their canonical form ("2nd and 4th" ->
    "2nd/4th"). Custom dates are already ordered and deduplicated by the model.

    Raises:
        InvalidRecurrenceRule: If the recurrence cannot be interpreted
    """
    raw = (definition.recurrence_rule or "").strip()
    descriptor = interpret(definition.model_copy(update={"day_of_week": None}))
    update: dict[str, Any] = {}

    if descriptor.kind == RecurrenceKind.CUSTOM:
        update["day_of_week"] = None
    else:
        update["day_of_week"] = definition.derived_day_of_week

    if descriptor.kind == RecurrenceKind.MONTHLY_ORDINAL and not _is_rrule(raw) and raw.lower() != "monthly":
        update["recurrence_rule"] = build_rule_from_ordinals(list(descriptor.ordinals))

    return definition.model_copy(update=update)
