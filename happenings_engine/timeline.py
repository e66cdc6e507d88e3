"""Timeline grouping for happenings_engine.

Groups resolved occurrences by display date, relocates rescheduled
occurrences and builds the full multi-event timeline for a window.

Relocation only ever changes ``display_key``. The ``identity_key`` an
occurrence was expanded with is what RSVPs, comments and slot claims
reference, so it must survive every step here unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .core.config_manager import EngineConfig
from .core.timezone_utils import DateLike, add_days, is_valid_date_key, parse_date_key, to_date_key
from .exceptions import InvalidRecurrenceRule, InvalidWindow
from .expander import expand
from .models import EventDefinition, Occurrence, OccurrenceOverride, PatchableField
from .overrides import OverrideMap, build_override_map, normalize_reschedule_patch, resolve_occurrences
from .verification import annotate

logger = logging.getLogger(__name__)

# Sorts entries without a start time after every real time
MISSING_START_TIME = "99:99"

_EVENT_DATE = PatchableField.EVENT_DATE.value
_START_TIME = PatchableField.START_TIME.value

Groups = dict[str, list[Occurrence]]


class OccurrenceDisplayStatus(str, Enum):
    """Badge shown for an occurrence, in priority order."""

    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    MODIFIED = "modified"
    NORMAL = "normal"


@dataclass(frozen=True)
class RescheduleInfo:
    """Where an occurrence is displayed and whether that moved."""

    display_date: str
    is_rescheduled: bool
    original_date_key: str


@dataclass(frozen=True)
class RescheduleConflict:
    """A reschedule that lands on another live occurrence of the same series."""

    event_id: str
    identity_key: str
    target_date_key: str


def _reschedule_target(occurrence: Occurrence) -> Optional[str]:
    if occurrence.cancelled:
        return None
    target = occurrence.effective_fields.get(_EVENT_DATE)
    if not isinstance(target, str) or not is_valid_date_key(target):
        return None
    if target == occurrence.identity_key:
        return None
    return target


def display_date_for(occurrence: Occurrence) -> RescheduleInfo:
    """Resolve the display date of an occurrence.

    Cancelled occurrences stay on their original date.
    """
    target = _reschedule_target(occurrence)
    return RescheduleInfo(
        display_date=target or occurrence.identity_key,
        is_rescheduled=target is not None,
        original_date_key=occurrence.identity_key,
    )


def occurrence_display_status(occurrence: Occurrence) -> OccurrenceDisplayStatus:
    """Status badge: cancelled > rescheduled > modified > normal."""
    if occurrence.cancelled:
        return OccurrenceDisplayStatus.CANCELLED
    if display_date_for(occurrence).is_rescheduled:
        return OccurrenceDisplayStatus.RESCHEDULED
    if occurrence.override is not None and normalize_reschedule_patch(
        occurrence.identity_key, occurrence.override.field_updates()
    ):
        return OccurrenceDisplayStatus.MODIFIED
    return OccurrenceDisplayStatus.NORMAL


def _has_dates(definition: EventDefinition, start_key: str, end_key: str, tz_name: str) -> bool:
    try:
        return bool(expand(definition, start_key, end_key, cap=1, tz_name=tz_name))
    except InvalidRecurrenceRule:
        return False


def _start_time_sort_key(occurrence: Occurrence) -> str:
    start_time = occurrence.effective_fields.get(_START_TIME)
    return start_time if isinstance(start_time, str) and start_time else MISSING_START_TIME


def group_by_date(occurrences: Iterable[Occurrence]) -> Groups:
    """Bucket occurrences by display date.

    Buckets come back in ascending date order; entries keep their input order.
    """
    groups: Groups = {}
    for occurrence in occurrences:
        groups.setdefault(occurrence.display_date, []).append(occurrence)
    return {date_key: groups[date_key] for date_key in sorted(groups)}


def extract_today(groups: Groups, today_key: str) -> list[Occurrence]:
    """Occurrences displayed on ``today_key``.

    ``today_key`` must come from :func:`today_key` in the canonical timezone,
    computed once for the request.
    """
    return list(groups.get(today_key, []))


def apply_reschedules(groups: Groups) -> Groups:
    """Move rescheduled occurrences to the bucket of their new date.

    Moved occurrences keep their identity key; only the display key changes.
    Emptied buckets are removed and bucket order stays ascending. Cancelled
    occurrences are never moved.
    """
    relocated: Groups = {}
    moved = 0
    for occurrences in groups.values():
        for occurrence in occurrences:
            target = _reschedule_target(occurrence)
            display_key = target or occurrence.identity_key
            if display_key != occurrence.display_date:
                occurrence = occurrence.model_copy(update={"key": occurrence.key.relocated(display_key)})
                moved += 1
            relocated.setdefault(occurrence.display_date, []).append(occurrence)

    if moved:
        logger.debug("Relocated %d rescheduled occurrences", moved)
    return {date_key: relocated[date_key] for date_key in sorted(relocated)}


def find_reschedule_conflicts(occurrences: Sequence[Occurrence]) -> list[RescheduleConflict]:
    """Reschedules that land on a date where the same series already occurs.

    Only live (non-cancelled, non-moved) occurrences count as blocking.
    """
    occupied: set[tuple[str, str]] = set()
    for occurrence in occurrences:
        if not occurrence.cancelled and _reschedule_target(occurrence) is None:
            occupied.add((occurrence.event_id, occurrence.identity_key))

    conflicts = []
    for occurrence in occurrences:
        target = _reschedule_target(occurrence)
        if target is not None and (occurrence.event_id, target) in occupied:
            conflicts.append(
                RescheduleConflict(
                    event_id=occurrence.event_id,
                    identity_key=occurrence.identity_key,
                    target_date_key=target,
                )
            )
    return conflicts


def format_date_group_header(date_key: str, today_key: str) -> str:
    """Header for a date bucket: "Today", "Tomorrow" or e.g. "Fri, Jan 3"."""
    if date_key == today_key:
        return "Today"
    if date_key == add_days(today_key, 1):
        return "Tomorrow"
    value = parse_date_key(date_key)
    return f"{value:%a}, {value:%b} {value.day}"


@dataclass
class TimelineMetrics:
    """Counters describing one timeline build."""

    events_processed: int = 0
    events_skipped: int = 0
    total_occurrences: int = 0
    cancelled_count: int = 0
    was_capped: bool = False


@dataclass
class TimelineResult:
    """Grouped occurrences for a window plus what was left out of them."""

    groups: Groups = field(default_factory=dict)
    cancelled_occurrences: list[Occurrence] = field(default_factory=list)
    unknown_events: list[EventDefinition] = field(default_factory=list)
    metrics: TimelineMetrics = field(default_factory=TimelineMetrics)

    def today(self, today_key: str) -> list[Occurrence]:
        """Live occurrences displayed on ``today_key``."""
        return extract_today(self.groups, today_key)


def build_timeline(
    definitions: Sequence[EventDefinition],
    window: Optional[tuple[DateLike, DateLike]] = None,
    overrides: Union[OverrideMap, Iterable[OccurrenceOverride]] = (),
    config: Optional[EngineConfig] = None,
    today: Optional[DateLike] = None,
) -> TimelineResult:
    """Expand, resolve and group many series for one window.

    Args:
        definitions: Series to include, in priority order (the event cap keeps the first ones)
        window: Inclusive (start, end); defaults to today plus the configured lookahead
        overrides: Override map or raw overrides, read once for the whole batch
        config: Caps and timezone; defaults to EngineConfig()
        today: Request "today", required when no window is given

    Returns:
        TimelineResult. Live occurrences are grouped by display date with
        reschedules relocated and entries ordered by start time. Cancelled
        occurrences are listed separately. Series whose recurrence cannot be
        interpreted are reported in ``unknown_events`` instead of raising.

    Raises:
        InvalidWindow: If the window is inverted, or neither window nor today is given
    """
    config = config or EngineConfig()

    if window is None:
        if today is None:
            raise InvalidWindow("Either a window or today is required")
        start_key = to_date_key(today, config.timezone)
        end_key = add_days(start_key, config.lookahead_days)
    else:
        start_key = to_date_key(window[0], config.timezone)
        end_key = to_date_key(window[1], config.timezone)
    if end_key < start_key:
        raise InvalidWindow(f"Window end {end_key} is before start {start_key}")

    override_map = overrides if isinstance(overrides, dict) else build_override_map(overrides)
    result = TimelineResult()
    metrics = result.metrics

    to_process = list(definitions[: config.max_events])
    metrics.events_skipped = len(definitions) - len(to_process)
    if metrics.events_skipped > 0:
        metrics.was_capped = True

    live: list[Occurrence] = []
    for position, definition in enumerate(to_process):
        remaining = config.max_total_occurrences - metrics.total_occurrences
        if remaining <= 0:
            leftover = to_process[position:]
            if any(_has_dates(d, start_key, end_key, config.timezone) for d in leftover):
                metrics.was_capped = True
            break
        metrics.events_processed += 1

        allowed = max(min(config.max_occurrences_per_event, remaining), 0)
        try:
            # One extra key separates a truncated series from an exact fit
            date_keys = expand(
                definition,
                start_key,
                end_key,
                cap=allowed + 1,
                tz_name=config.timezone,
            )
        except InvalidRecurrenceRule as e:
            logger.warning("Schedule unknown for event %s: %s", definition.id, e)
            result.unknown_events.append(definition)
            continue

        if len(date_keys) > allowed:
            metrics.was_capped = True
            date_keys = date_keys[:allowed]
        metrics.total_occurrences += len(date_keys)

        for occurrence in resolve_occurrences(definition, date_keys, override_map):
            occurrence = annotate(occurrence, definition)
            if occurrence.cancelled:
                result.cancelled_occurrences.append(occurrence)
            else:
                live.append(occurrence)

    metrics.cancelled_count = len(result.cancelled_occurrences)
    result.cancelled_occurrences.sort(key=lambda o: o.identity_key)

    groups = apply_reschedules(group_by_date(live))
    result.groups = {
        date_key: sorted(entries, key=_start_time_sort_key) for date_key, entries in groups.items()
    }

    logger.info(
        "Timeline %s..%s: %d events, %d occurrences, %d cancelled, %d unknown%s",
        start_key,
        end_key,
        metrics.events_processed,
        metrics.total_occurrences,
        metrics.cancelled_count,
        len(result.unknown_events),
        " (capped)" if metrics.was_capped else "",
    )
    return result


def summarize(result: TimelineResult, today_key: str) -> dict[str, Any]:
    """Compact, JSON-friendly view of a timeline for listings and digests."""
    return {
        "groups": [
            {
                "date_key": date_key,
                "header": format_date_group_header(date_key, today_key),
                "occurrences": [
                    {
                        "event_id": occurrence.event_id,
                        "identity_key": occurrence.identity_key,
                        "display_date": occurrence.display_date,
                        "status": occurrence_display_status(occurrence).value,
                        "verification": occurrence.verification.value if occurrence.verification else None,
                    }
                    for occurrence in entries
                ],
            }
            for date_key, entries in result.groups.items()
        ],
        "cancelled": [
            {"event_id": o.event_id, "identity_key": o.identity_key} for o in result.cancelled_occurrences
        ],
        "unknown_event_ids": [d.id for d in result.unknown_events],
        "metrics": asdict(result.metrics),
    }
