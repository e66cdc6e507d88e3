"""Custom exception hierarchy for the occurrence engine.

Write-time failures (a definition that cannot be interpreted, a window that
runs backwards) surface to the caller as one of these types. Read-time callers
are expected to catch ``OccurrenceEngineError`` and degrade to a
"schedule unknown" state instead of failing the whole page.
"""


class OccurrenceEngineError(Exception):
    """Base exception for all occurrence engine errors."""


class InvalidRecurrenceRule(OccurrenceEngineError):
    """A recurrence definition could not be interpreted.

    Raised when:
    - The recurrence token is unknown or malformed (e.g. "seasonal", "FREQ=DAILY")
    - A custom series has no custom dates
    - The cached day_of_week disagrees with the anchor date's weekday
    """


class AmbiguousOrdinal(InvalidRecurrenceRule):
    """Ordinal and weekday combination is contradictory.

    Raised when:
    - An RRULE BYDAY list mixes weekdays (e.g. "1MO,3TH")
    - An ordinal is outside 1st..5th / last
    - The same ordinal is listed twice
    """


class InvalidWindow(OccurrenceEngineError):
    """Expansion window end precedes its start."""


class InvalidOverridePatch(OccurrenceEngineError):
    """An override patch carried keys outside the patchable field set.

    Raised by ``sanitize_patch(..., strict=True)`` on write paths. Inside the
    engine the offending keys are dropped and logged under this name instead.
    """


class InvalidDateKey(OccurrenceEngineError):
    """A date key was not a real calendar date in strict YYYY-MM-DD form."""


class InvalidEventStatus(OccurrenceEngineError):
    """A series status string is not one of the known event statuses."""
