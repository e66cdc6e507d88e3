"""happenings_engine - occurrence expansion and override engine for community events.

Turns stored event series (anchor date, recurrence rule, custom dates) plus
sparse per-date overrides into concrete, windowed occurrences in the
platform's canonical timezone, with a verification state kept separate from
publish visibility.

Pipeline: recurrence.interpret -> expander.expand -> overrides.apply_overrides
-> timeline.group_by_date / apply_reschedules. verification.evaluate is applied
wherever occurrences are displayed.
"""

__version__ = "0.1.0"

from .core.config_manager import ConfigManager, EngineConfig
from .core.timezone_utils import DEFAULT_TIMEZONE, add_days, is_valid_date_key, to_date_key, today_key
from .exceptions import (
    AmbiguousOrdinal,
    InvalidDateKey,
    InvalidEventStatus,
    InvalidOverridePatch,
    InvalidRecurrenceRule,
    InvalidWindow,
    OccurrenceEngineError,
)
from .expander import NextOccurrence, compute_next_occurrence, expand
from .models import (
    EventDefinition,
    EventStatus,
    Occurrence,
    OccurrenceKey,
    OccurrenceOverride,
    OverrideStatus,
    PatchableField,
    RecurrenceDescriptor,
    RecurrenceKind,
    VerificationState,
)
from .overrides import apply_override, apply_overrides, build_override_map
from .recurrence import (
    build_rule_from_ordinals,
    canonicalize_definition,
    interpret,
    label,
    parse_ordinals_from_rule,
)
from .timeline import (
    apply_reschedules,
    build_timeline,
    display_date_for,
    extract_today,
    format_date_group_header,
    group_by_date,
)
from .verification import evaluate, evaluate_event, is_publicly_visible

__all__ = [
    "DEFAULT_TIMEZONE",
    "AmbiguousOrdinal",
    "ConfigManager",
    "EngineConfig",
    "EventDefinition",
    "EventStatus",
    "InvalidDateKey",
    "InvalidEventStatus",
    "InvalidOverridePatch",
    "InvalidRecurrenceRule",
    "InvalidWindow",
    "NextOccurrence",
    "Occurrence",
    "OccurrenceEngineError",
    "OccurrenceKey",
    "OccurrenceOverride",
    "OverrideStatus",
    "PatchableField",
    "RecurrenceDescriptor",
    "RecurrenceKind",
    "VerificationState",
    "add_days",
    "apply_override",
    "apply_overrides",
    "apply_reschedules",
    "build_override_map",
    "build_rule_from_ordinals",
    "build_timeline",
    "canonicalize_definition",
    "compute_next_occurrence",
    "display_date_for",
    "evaluate",
    "evaluate_event",
    "expand",
    "extract_today",
    "format_date_group_header",
    "group_by_date",
    "interpret",
    "is_publicly_visible",
    "is_valid_date_key",
    "label",
    "parse_ordinals_from_rule",
    "to_date_key",
    "today_key",
]
