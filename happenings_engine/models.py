"""Data models for the occurrence engine.

Stored records (``EventDefinition``, ``OccurrenceOverride``) arrive as frozen
snapshots. ``Occurrence`` values are derived on every read and never persisted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
    model_validator,
)

from .core.timezone_utils import DEFAULT_TIMEZONE, format_date_key, is_valid_date_key, weekday_name
from .exceptions import InvalidOverridePatch

logger = logging.getLogger(__name__)

# Ordinal value for "last <weekday> of the month"
LAST_ORDINAL = -1


class EventStatus(str, Enum):
    """Series-level lifecycle status."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    DRAFT = "draft"
    NEEDS_VERIFICATION = "needs_verification"
    UNVERIFIED = "unverified"


class OverrideStatus(str, Enum):
    """Occurrence-level status carried by an override."""

    NORMAL = "normal"
    CANCELLED = "cancelled"


class RecurrenceKind(str, Enum):
    """Closed set of recurrence modes."""

    ONE_TIME = "one-time"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY_ORDINAL = "monthlyOrdinal"
    CUSTOM = "custom"


class VerificationState(str, Enum):
    """Public trust signal for an occurrence."""

    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"


class PatchableField(str, Enum):
    """Fields an occurrence override may change.

    Verification, publish state and scheduling fields of the series are
    deliberately absent; they are series-level only.
    """

    TITLE = "title"
    DESCRIPTION = "description"
    EVENT_DATE = "event_date"
    START_TIME = "start_time"
    END_TIME = "end_time"
    VENUE_ID = "venue_id"
    LOCATION_MODE = "location_mode"
    CUSTOM_LOCATION_NAME = "custom_location_name"
    CUSTOM_ADDRESS = "custom_address"
    CUSTOM_CITY = "custom_city"
    CUSTOM_STATE = "custom_state"
    ONLINE_URL = "online_url"
    LOCATION_NOTES = "location_notes"
    CAPACITY = "capacity"
    HAS_TIMESLOTS = "has_timeslots"
    TOTAL_SLOTS = "total_slots"
    SLOT_DURATION_MINUTES = "slot_duration_minutes"
    IS_FREE = "is_free"
    COST_LABEL = "cost_label"
    SIGNUP_URL = "signup_url"
    SIGNUP_DEADLINE = "signup_deadline"
    SIGNUP_TIME = "signup_time"
    AGE_POLICY = "age_policy"
    EXTERNAL_URL = "external_url"
    CATEGORIES = "categories"
    COVER_IMAGE_URL = "cover_image_url"
    HOST_NOTES = "host_notes"


PATCHABLE_FIELD_NAMES: frozenset[str] = frozenset(f.value for f in PatchableField)

# Never patchable per occurrence
SERIES_ONLY_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "is_published",
        "last_verified_at",
        "verified_by",
        "recurrence_rule",
        "day_of_week",
        "custom_dates",
        "max_occurrences",
        "event_type",
    }
)

# Legacy override columns -> field they set
LEGACY_OVERRIDE_COLUMNS: dict[str, PatchableField] = {
    "override_start_time": PatchableField.START_TIME,
    "override_cover_image_url": PatchableField.COVER_IMAGE_URL,
    "override_notes": PatchableField.HOST_NOTES,
}


class RecurrenceDescriptor(BaseModel):
    """Parsed, closed representation of a series schedule.

    Produced once by the interpreter; nothing downstream re-reads raw
    recurrence tokens. ``weekday`` uses Python numbering (0=Monday).
    """

    kind: RecurrenceKind = Field(..., description="Recurrence mode")
    weekday: Optional[int] = Field(default=None, ge=0, le=6, description="Target weekday, 0=Monday")
    ordinals: tuple[int, ...] = Field(
        default=(), description="Monthly ordinals sorted ascending, last (-1) after numbers"
    )
    interval_days: Optional[int] = Field(default=None, description="7 for weekly, 14 for biweekly")
    custom_dates: tuple[date, ...] = Field(default=(), description="Explicit dates, ascending")
    anchor_date: Optional[date] = Field(default=None, description="Series start")
    end_date: Optional[date] = Field(default=None, description="Inclusive series end")
    max_occurrences: Optional[int] = Field(
        default=None, ge=1, description="Series length counted from the anchor"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_variant(self) -> RecurrenceDescriptor:
        kind = self.kind
        if kind in (RecurrenceKind.WEEKLY, RecurrenceKind.BIWEEKLY):
            expected = 7 if kind == RecurrenceKind.WEEKLY else 14
            if self.weekday is None or self.interval_days != expected or self.anchor_date is None:
                raise ValueError(f"{kind.value} needs weekday, anchor_date and interval_days={expected}")
        elif kind == RecurrenceKind.MONTHLY_ORDINAL:
            if self.weekday is None or not self.ordinals or self.anchor_date is None:
                raise ValueError("monthlyOrdinal needs weekday, anchor_date and ordinals")
        elif kind == RecurrenceKind.CUSTOM:
            if not self.custom_dates:
                raise ValueError("custom needs at least one custom date")
        elif self.anchor_date is None:
            raise ValueError("one-time needs anchor_date")
        return self

    @property
    def is_recurring(self) -> bool:
        """True for every kind except one-time."""
        return self.kind != RecurrenceKind.ONE_TIME


class EventDefinition(BaseModel):
    """Stored series definition, as supplied by the persistence layer.

    ``anchor_date`` is the only scheduling source of truth; ``day_of_week`` is a
    cache the interpreter checks against it and never trusts on its own.
    """

    id: str = Field(..., description="Event ID")
    anchor_date: date = Field(..., description="First/reference date of the series")
    recurrence_rule: Optional[str] = Field(
        default=None, description="Raw recurrence token (weekly, 1st/3rd, RRULE, ...)"
    )
    day_of_week: Optional[str] = Field(default=None, description="Cached weekday name")
    custom_dates: tuple[date, ...] = Field(default=(), description="Explicit dates for custom series")
    max_occurrences: Optional[int] = Field(default=None, ge=1, description="Series occurrence bound")
    recurrence_end_date: Optional[date] = Field(default=None, description="Inclusive series end")
    timezone: str = Field(default=DEFAULT_TIMEZONE, description="Canonical IANA timezone")
    status: EventStatus = Field(default=EventStatus.ACTIVE, description="Series status")
    last_verified_at: Optional[datetime] = Field(default=None, description="Last confirmation time")
    is_published: bool = Field(default=False, description="Visibility flag")
    base_fields: dict[str, Any] = Field(
        default_factory=dict, description="Per-occurrence display fields before overrides"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("custom_dates", mode="after")
    @classmethod
    def _order_custom_dates(cls, value: tuple[date, ...]) -> tuple[date, ...]:
        return tuple(sorted(set(value)))

    @property
    def derived_day_of_week(self) -> str:
        """Weekday name computed from the anchor date."""
        return weekday_name(self.anchor_date)

    @field_serializer("last_verified_at", when_used="unless-none")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()


def sanitize_patch(event_id: Any, date_key: Any, patch: Any, strict: bool = False) -> dict[str, Any]:
    """Keep only patchable keys from a raw override patch.

    Unknown keys and series-level keys (status, publish and verification state)
    are dropped and logged; they are never trusted even though the write path
    should already have rejected them. Write paths pass ``strict=True`` to
    reject such a patch instead.

    Raises:
        InvalidOverridePatch: In strict mode, for a non-object patch or any
            non-patchable key
    """
    if patch is None:
        return {}
    if not isinstance(patch, dict):
        message = f"Non-object patch for {event_id}/{date_key}: {type(patch).__name__}"
        if strict:
            raise InvalidOverridePatch(message)
        logger.warning("%s: ignoring %s", InvalidOverridePatch.__name__, message)
        return {}

    sanitized: dict[str, Any] = {}
    dropped: list[str] = []
    for key, value in patch.items():
        name = key.value if isinstance(key, PatchableField) else key
        if name in PATCHABLE_FIELD_NAMES:
            sanitized[name] = value
        else:
            dropped.append(str(name))

    if dropped:
        message = f"Non-patchable keys {sorted(dropped)} for {event_id}/{date_key}"
        if strict:
            raise InvalidOverridePatch(message)
        logger.warning("%s: dropped %s", InvalidOverridePatch.__name__, message)
    return sanitized


class OccurrenceOverride(BaseModel):
    """Per-occurrence exception record (cancellation and/or field patch)."""

    event_id: str = Field(..., description="Series the override belongs to")
    date_key: str = Field(..., description="Identity key of the occurrence (YYYY-MM-DD)")
    status: OverrideStatus = Field(default=OverrideStatus.NORMAL, description="Occurrence status")
    patch: dict[PatchableField, Any] = Field(default_factory=dict, description="Field patch")
    override_start_time: Optional[str] = Field(default=None, description="Legacy start time column")
    override_cover_image_url: Optional[str] = Field(default=None, description="Legacy flyer column")
    override_notes: Optional[str] = Field(default=None, description="Legacy host notes column")
    created_at: Optional[datetime] = Field(default=None, description="Creation time")

    model_config = ConfigDict(frozen=True)

    @field_validator("date_key", mode="before")
    @classmethod
    def _normalize_date_key(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            raise ValueError("date_key must be a calendar date, not a timestamp")
        if isinstance(value, date):
            return format_date_key(value)
        if not is_valid_date_key(value):
            raise ValueError(f"invalid date key {value!r}")
        return value

    @field_validator("patch", mode="before")
    @classmethod
    def _sanitize_patch(cls, value: Any, info: ValidationInfo) -> dict[str, Any]:
        data = info.data
        return sanitize_patch(data.get("event_id"), data.get("date_key"), value)

    @property
    def is_cancelled(self) -> bool:
        """True when this override cancels its occurrence."""
        return self.status == OverrideStatus.CANCELLED

    def field_updates(self) -> dict[str, Any]:
        """Field values this override sets: legacy columns first, patch on top."""
        updates: dict[str, Any] = {}
        for column, target in LEGACY_OVERRIDE_COLUMNS.items():
            value = getattr(self, column)
            if value is not None:
                updates[target.value] = value
        for key, value in self.patch.items():
            updates[PatchableField(key).value] = value
        return updates

    @property
    def is_noop(self) -> bool:
        """A normal-status override with nothing to patch behaves like no override."""
        return not self.is_cancelled and not self.field_updates()


class OccurrenceKey(BaseModel):
    """Identity/display pair for an occurrence.

    ``identity_key`` is the originally computed date key and never changes; all
    RSVPs, comments and slot claims key off it. ``display_key`` is where the
    occurrence is shown and moves when it is rescheduled.
    """

    identity_key: str = Field(..., description="Original computed date key")
    display_key: str = Field(..., description="Date key the occurrence is displayed on")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def for_date(cls, date_key: str) -> OccurrenceKey:
        """Key for an occurrence shown on its own date."""
        return cls(identity_key=date_key, display_key=date_key)

    def relocated(self, display_key: str) -> OccurrenceKey:
        """Same identity, new display position."""
        return OccurrenceKey(identity_key=self.identity_key, display_key=display_key)

    @property
    def is_relocated(self) -> bool:
        """True when displayed on a date other than its identity date."""
        return self.identity_key != self.display_key


class Occurrence(BaseModel):
    """One concrete instance of a series, derived per request."""

    event_id: str = Field(..., description="Series ID")
    key: OccurrenceKey = Field(..., description="Identity and display keys")
    effective_fields: dict[str, Any] = Field(
        default_factory=dict, description="Base fields merged with override updates"
    )
    cancelled: bool = Field(default=False, description="Occurrence-level cancellation")
    override: Optional[OccurrenceOverride] = Field(default=None, description="Applied override")
    verification: Optional[VerificationState] = Field(default=None, description="Trust signal")

    model_config = ConfigDict(frozen=True)

    @property
    def identity_key(self) -> str:
        """Stable foreign key for child records."""
        return self.key.identity_key

    @property
    def display_date(self) -> str:
        """Date key the occurrence is displayed on."""
        return self.key.display_key
