"""Unit tests for happenings_engine.models validation."""

import logging
from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from happenings_engine.exceptions import (
    AmbiguousOrdinal,
    InvalidDateKey,
    InvalidEventStatus,
    InvalidOverridePatch,
    InvalidRecurrenceRule,
    InvalidWindow,
    OccurrenceEngineError,
)
from happenings_engine.models import (
    PATCHABLE_FIELD_NAMES,
    SERIES_ONLY_FIELDS,
    EventDefinition,
    OccurrenceKey,
    OccurrenceOverride,
    PatchableField,
    RecurrenceDescriptor,
    RecurrenceKind,
    sanitize_patch,
)

pytestmark = pytest.mark.unit


class TestExceptionHierarchy:
    """Tests for the engine exception hierarchy."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            InvalidRecurrenceRule,
            AmbiguousOrdinal,
            InvalidWindow,
            InvalidOverridePatch,
            InvalidDateKey,
            InvalidEventStatus,
        ],
    )
    def test_all_inherit_from_base(self, exc_class):
        """Every engine error can be caught as OccurrenceEngineError."""
        assert issubclass(exc_class, OccurrenceEngineError)

    def test_ambiguous_is_invalid_rule(self):
        """AmbiguousOrdinal is a kind of InvalidRecurrenceRule."""
        assert issubclass(AmbiguousOrdinal, InvalidRecurrenceRule)


class TestPatchAllowList:
    """Tests for the patchable field allow-list."""

    def test_series_fields_not_patchable(self):
        """Verification, publish and scheduling fields are series-only."""
        assert not PATCHABLE_FIELD_NAMES & SERIES_ONLY_FIELDS

    def test_sanitize_drops_unknown_keys(self, caplog):
        """Unknown keys are dropped and logged."""
        with caplog.at_level(logging.WARNING, logger="happenings_engine.models"):
            result = sanitize_patch("evt-1", "2026-01-12", {"title": "T", "last_verified_at": "x", "bogus": 1})

        assert result == {"title": "T"}
        assert "bogus" in caplog.text
        assert "last_verified_at" in caplog.text

    @pytest.mark.parametrize("patch", [{"title": "T", "status": "cancelled"}, "not a dict"])
    def test_sanitize_strict_rejects(self, patch):
        """Strict mode raises instead of dropping."""
        with pytest.raises(InvalidOverridePatch):
            sanitize_patch("evt-1", "2026-01-12", patch, strict=True)

    def test_sanitize_strict_accepts_clean_patch(self):
        """Strict mode passes allow-listed keys through."""
        assert sanitize_patch("evt-1", "2026-01-12", {"title": "T"}, strict=True) == {"title": "T"}

    @pytest.mark.parametrize("value", [None, "not a dict", ["title"]])
    def test_sanitize_non_dict(self, value):
        """Missing or non-object patches become empty."""
        assert sanitize_patch("evt-1", "2026-01-12", value) == {}

    def test_override_patch_uses_enum_keys(self):
        """Override patches are keyed by PatchableField."""
        override = OccurrenceOverride(event_id="evt-1", date_key="2026-01-12", patch={"host_notes": "Hi"})

        assert override.patch == {PatchableField.HOST_NOTES: "Hi"}
        assert override.field_updates() == {"host_notes": "Hi"}


class TestOccurrenceOverride:
    """Tests for OccurrenceOverride validation."""

    def test_date_key_from_date(self):
        """A date is normalized to its key."""
        override = OccurrenceOverride(event_id="evt-1", date_key=date(2026, 1, 12))

        assert override.date_key == "2026-01-12"

    @pytest.mark.parametrize("value", ["2026-1-12", "2026-02-30", datetime(2026, 1, 12, tzinfo=timezone.utc)])
    def test_bad_date_key_rejected(self, value):
        """Malformed keys and timestamps are rejected."""
        with pytest.raises(ValidationError):
            OccurrenceOverride(event_id="evt-1", date_key=value)

    def test_noop_detection(self):
        """Only a normal override with nothing to set is a no-op."""
        assert OccurrenceOverride(event_id="evt-1", date_key="2026-01-12").is_noop
        assert not OccurrenceOverride(event_id="evt-1", date_key="2026-01-12", status="cancelled").is_noop
        assert not OccurrenceOverride(event_id="evt-1", date_key="2026-01-12", override_notes="n").is_noop

    def test_frozen(self):
        """Overrides are immutable snapshots."""
        override = OccurrenceOverride(event_id="evt-1", date_key="2026-01-12")

        with pytest.raises(ValidationError):
            override.status = "cancelled"


class TestRecurrenceDescriptor:
    """Tests for RecurrenceDescriptor variant checks."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"kind": RecurrenceKind.WEEKLY, "weekday": 0, "interval_days": 14, "anchor_date": date(2026, 1, 5)},
            {"kind": RecurrenceKind.BIWEEKLY, "weekday": 0, "interval_days": 14},
            {"kind": RecurrenceKind.MONTHLY_ORDINAL, "weekday": 0, "anchor_date": date(2026, 1, 5)},
            {"kind": RecurrenceKind.CUSTOM},
            {"kind": RecurrenceKind.ONE_TIME},
        ],
    )
    def test_inconsistent_variants_rejected(self, kwargs):
        """Each kind requires its own fields."""
        with pytest.raises(ValidationError):
            RecurrenceDescriptor(**kwargs)


class TestOccurrenceKey:
    """Tests for OccurrenceKey."""

    def test_relocated_keeps_identity(self):
        """Relocation changes only the display key."""
        key = OccurrenceKey.for_date("2026-01-12")

        moved = key.relocated("2026-01-14")

        assert moved.identity_key == "2026-01-12"
        assert moved.display_key == "2026-01-14"
        assert moved.is_relocated
        assert not key.is_relocated


class TestEventDefinition:
    """Tests for EventDefinition."""

    def test_derived_day_of_week(self, make_definition):
        """The weekday comes from the anchor date."""
        assert make_definition().derived_day_of_week == "Monday"

    def test_serializes_last_verified_at(self, make_definition):
        """Timestamps dump as ISO strings."""
        definition = make_definition(last_verified_at=datetime(2026, 1, 2, 15, 30, tzinfo=timezone.utc))

        assert definition.model_dump()["last_verified_at"] == "2026-01-02T15:30:00+00:00"

    def test_anchor_required(self):
        """Definitions without an anchor date are rejected."""
        with pytest.raises(ValidationError):
            EventDefinition(id="evt-1")
