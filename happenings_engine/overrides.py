"""Override resolution for happenings_engine.

Merges per-occurrence exceptions onto expanded occurrences. Field precedence,
lowest to highest: series base fields, legacy override columns, override
patch. Cancellation only ever comes from ``override.status``.

Overrides are best-effort enrichments: anomalies are logged and skipped,
never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any, Optional, Union

from .core.timezone_utils import format_date_key, is_valid_date_key
from .models import EventDefinition, Occurrence, OccurrenceKey, OccurrenceOverride, PatchableField

logger = logging.getLogger(__name__)

OverrideMap = dict[tuple[str, str], OccurrenceOverride]

_EVENT_DATE = PatchableField.EVENT_DATE.value


def build_override_key(event_id: str, date_key: str) -> tuple[str, str]:
    """Lookup key for an override map."""
    return (event_id, date_key)


def _created_sort_value(override: OccurrenceOverride) -> datetime:
    created = override.created_at
    if created is None:
        return datetime.min.replace(tzinfo=UTC)
    # Naive timestamps are UTC
    return created if created.tzinfo is not None else created.replace(tzinfo=UTC)


def build_override_map(overrides: Iterable[OccurrenceOverride]) -> OverrideMap:
    """Index overrides by (event_id, date_key).

    Built once per request and shared across all events in a batch. When the
    same key appears twice the newest ``created_at`` wins and a warning is
    logged.
    """
    result: OverrideMap = {}
    for override in overrides:
        key = build_override_key(override.event_id, override.date_key)
        existing = result.get(key)
        if existing is not None:
            logger.warning(
                "Duplicate override for %s/%s; keeping the newest", override.event_id, override.date_key
            )
            if _created_sort_value(override) < _created_sort_value(existing):
                continue
        result[key] = override
    return result


def normalize_reschedule_patch(date_key: str, patch: Mapping[str, Any]) -> dict[str, Any]:
    """Clean the ``event_date`` entry of a field patch.

    - ``event_date`` equal to the occurrence's own date is not a reschedule: removed
    - date objects become date keys
    - null or malformed values are removed; an occurrence cannot lose its date
    """
    result = dict(patch)
    if _EVENT_DATE not in result:
        return result

    value = result[_EVENT_DATE]
    if isinstance(value, date) and not isinstance(value, datetime):
        value = format_date_key(value)

    if value is None or value == date_key:
        del result[_EVENT_DATE]
    elif not is_valid_date_key(value):
        logger.warning("Ignoring malformed event_date %r in override for %s", value, date_key)
        del result[_EVENT_DATE]
    else:
        result[_EVENT_DATE] = value
    return result


def base_occurrences(definition: EventDefinition, date_keys: Iterable[str]) -> list[Occurrence]:
    """Build un-overridden occurrences for expanded date keys."""
    occurrences = []
    for date_key in date_keys:
        fields = dict(definition.base_fields)
        fields[_EVENT_DATE] = date_key
        occurrences.append(
            Occurrence(event_id=definition.id, key=OccurrenceKey.for_date(date_key), effective_fields=fields)
        )
    return occurrences


def apply_override(occurrence: Occurrence, override: Optional[OccurrenceOverride]) -> Occurrence:
    """Merge one override onto an occurrence.

    Applying the same override again yields an equal occurrence. A normal
    override with nothing to patch returns the occurrence unchanged.
    """
    if override is None or override.is_noop:
        return occurrence

    if override.event_id != occurrence.event_id or override.date_key != occurrence.identity_key:
        logger.warning(
            "Override %s/%s does not match occurrence %s/%s; skipping",
            override.event_id,
            override.date_key,
            occurrence.event_id,
            occurrence.identity_key,
        )
        return occurrence

    updates = normalize_reschedule_patch(occurrence.identity_key, override.field_updates())
    fields = dict(occurrence.effective_fields)
    fields.update(updates)

    return occurrence.model_copy(
        update={
            "effective_fields": fields,
            "cancelled": override.is_cancelled,
            "override": override,
        }
    )


def apply_overrides(
    occurrences: Iterable[Occurrence],
    overrides: Union[OverrideMap, Iterable[OccurrenceOverride]],
) -> list[Occurrence]:
    """Apply matching overrides to each occurrence.

    Args:
        occurrences: Expanded occurrences
        overrides: Pre-built override map, or raw overrides to index

    Returns:
        New occurrences with cancelled flags and patched fields; overrides for
        other events or for dates outside the expansion are ignored.
    """
    override_map = overrides if isinstance(overrides, dict) else build_override_map(overrides)

    merged = []
    applied = 0
    for occurrence in occurrences:
        override = override_map.get(build_override_key(occurrence.event_id, occurrence.identity_key))
        if override is not None:
            applied += 1
        merged.append(apply_override(occurrence, override))

    logger.debug("Applied %d overrides to %d occurrences", applied, len(merged))
    return merged


def resolve_occurrences(
    definition: EventDefinition,
    date_keys: Iterable[str],
    overrides: Union[OverrideMap, Iterable[OccurrenceOverride]],
) -> list[Occurrence]:
    """Base occurrences for ``date_keys`` with the definition's overrides merged on."""
    return apply_overrides(base_occurrences(definition, date_keys), overrides)
