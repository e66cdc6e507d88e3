"""Unit tests for happenings_engine.overrides module."""

import logging
from datetime import date, datetime, timezone

import pytest

from happenings_engine.expander import expand
from happenings_engine.models import OccurrenceOverride, OverrideStatus
from happenings_engine.overrides import (
    apply_override,
    apply_overrides,
    base_occurrences,
    build_override_key,
    build_override_map,
    normalize_reschedule_patch,
    resolve_occurrences,
)

pytestmark = pytest.mark.unit


def make_override(**kwargs) -> OccurrenceOverride:
    """Create a test override for evt-1."""
    data = {"event_id": "evt-1", "date_key": "2026-01-12"}
    data.update(kwargs)
    return OccurrenceOverride(**data)


class TestBuildOverrideMap:
    """Tests for build_override_map()."""

    def test_keys_by_event_and_date(self):
        """Overrides are indexed by (event_id, date_key)."""
        first = make_override()
        second = make_override(event_id="evt-2")

        result = build_override_map([first, second])

        assert result[build_override_key("evt-1", "2026-01-12")] is first
        assert result[("evt-2", "2026-01-12")] is second

    def test_duplicate_keeps_newest(self, caplog):
        """When a key repeats the newest created_at wins, with a warning."""
        older = make_override(created_at=datetime(2026, 1, 1, tzinfo=timezone.utc), status="cancelled")
        newer = make_override(created_at=datetime(2026, 1, 2, tzinfo=timezone.utc))

        with caplog.at_level(logging.WARNING, logger="happenings_engine.overrides"):
            result = build_override_map([newer, older])

        assert result[("evt-1", "2026-01-12")] is newer
        assert "Duplicate override" in caplog.text

    def test_duplicate_without_created_at_loses(self):
        """An override without a timestamp never replaces a dated one."""
        dated = make_override(created_at=datetime(2026, 1, 2))
        undated = make_override(status="cancelled")

        result = build_override_map([dated, undated])

        assert result[("evt-1", "2026-01-12")] is dated


class TestNormalizeReschedulePatch:
    """Tests for normalize_reschedule_patch()."""

    def test_same_date_is_stripped(self):
        """event_date equal to the identity date is not a reschedule."""
        assert normalize_reschedule_patch("2026-01-12", {"event_date": "2026-01-12", "title": "X"}) == {"title": "X"}

    def test_date_object_normalized(self):
        """date values become date keys."""
        result = normalize_reschedule_patch("2026-01-12", {"event_date": date(2026, 1, 14)})

        assert result == {"event_date": "2026-01-14"}

    @pytest.mark.parametrize("value", [None, "next tuesday", "2026-02-30"])
    def test_null_or_malformed_dropped(self, value):
        """An occurrence can't lose or garble its date."""
        assert normalize_reschedule_patch("2026-01-12", {"event_date": value}) == {}

    def test_without_event_date_unchanged(self):
        """Patches without event_date pass through."""
        assert normalize_reschedule_patch("2026-01-12", {"title": "X"}) == {"title": "X"}


class TestApplyOverrides:
    """Tests for apply_override() / apply_overrides()."""

    def setup_method(self):
        """Set up a fixed set of base occurrences."""
        self.date_keys = ["2026-01-05", "2026-01-12", "2026-01-19"]

    def test_base_occurrences(self, make_definition):
        """Base occurrences carry base fields and their own date."""
        occurrences = base_occurrences(make_definition(), self.date_keys)

        assert [o.identity_key for o in occurrences] == self.date_keys
        assert occurrences[1].effective_fields == {
            "title": "Open Mic",
            "start_time": "19:00",
            "event_date": "2026-01-12",
        }
        assert not any(o.cancelled for o in occurrences)

    def test_cancellation_affects_only_its_date(self, make_definition):
        """A cancelled override flags one occurrence; siblings are untouched."""
        definition = make_definition(
            recurrence_rule="custom",
            custom_dates=[date(2026, 2, 1), date(2026, 2, 8), date(2026, 3, 15)],
        )
        date_keys = expand(definition, "2026-02-01", "2026-02-28")
        override = make_override(date_key="2026-02-08", status=OverrideStatus.CANCELLED)

        result = resolve_occurrences(definition, date_keys, [override])

        assert [(o.identity_key, o.cancelled) for o in result] == [("2026-02-01", False), ("2026-02-08", True)]

    def test_patch_precedence(self, make_definition):
        """Patch beats legacy columns, which beat base fields."""
        override = make_override(
            override_start_time="18:00",
            override_notes="Bring a capo",
            patch={"start_time": "20:30", "title": "Open Mic (Special)"},
        )

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), [override])

        patched = result[1].effective_fields
        assert patched["start_time"] == "20:30"
        assert patched["title"] == "Open Mic (Special)"
        assert patched["host_notes"] == "Bring a capo"
        assert result[1].override is override
        assert result[0].effective_fields["start_time"] == "19:00"

    def test_legacy_columns_alone(self, make_definition):
        """Legacy columns apply when the patch doesn't set the field."""
        override = make_override(override_cover_image_url="https://img.example/flyer.png")

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), [override])

        assert result[1].effective_fields["cover_image_url"] == "https://img.example/flyer.png"

    def test_null_patch_value_clears(self, make_definition):
        """A null in the patch clears the base value."""
        override = make_override(patch={"start_time": None})

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), [override])

        assert result[1].effective_fields["start_time"] is None

    def test_status_in_patch_never_cancels(self, make_definition, caplog):
        """Cancellation only comes from override.status; patch keys are dropped."""
        with caplog.at_level(logging.WARNING, logger="happenings_engine.models"):
            override = make_override(patch={"status": "cancelled", "is_published": False, "title": "Kept"})

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), [override])

        assert not result[1].cancelled
        assert result[1].effective_fields["title"] == "Kept"
        assert "status" not in result[1].effective_fields
        assert "is_published" not in result[1].effective_fields
        assert "InvalidOverridePatch" in caplog.text

    def test_idempotent(self, make_definition):
        """Applying the same override twice yields the same occurrence."""
        override = make_override(status="cancelled", patch={"title": "Moved indoors"})
        occurrence = base_occurrences(make_definition(), ["2026-01-12"])[0]

        once = apply_override(occurrence, override)
        twice = apply_override(once, override)

        assert once == twice

    def test_noop_override_equals_no_override(self, make_definition):
        """Normal status with an empty patch is the same as no override."""
        occurrence = base_occurrences(make_definition(), ["2026-01-12"])[0]

        assert apply_override(occurrence, make_override()) == occurrence
        assert apply_override(occurrence, None) == occurrence

    def test_mismatched_override_skipped(self, make_definition, caplog):
        """Overrides for another event or date are ignored with a warning."""
        occurrence = base_occurrences(make_definition(), ["2026-01-12"])[0]
        foreign = make_override(event_id="evt-9", status="cancelled")

        with caplog.at_level(logging.WARNING, logger="happenings_engine.overrides"):
            result = apply_override(occurrence, foreign)

        assert result == occurrence
        assert "does not match" in caplog.text

    def test_overrides_outside_expansion_ignored(self, make_definition):
        """Overrides on dates that were not expanded have no effect."""
        stray = make_override(date_key="2026-01-13", status="cancelled")

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), [stray])

        assert not any(o.cancelled for o in result)

    def test_accepts_prebuilt_map(self, make_definition):
        """A shared override map can be passed directly."""
        override_map = build_override_map([make_override(status="cancelled")])

        result = apply_overrides(base_occurrences(make_definition(), self.date_keys), override_map)

        assert [o.cancelled for o in result] == [False, True, False]

    def test_reschedule_keeps_identity(self, make_definition):
        """A reschedule patch changes event_date but not the identity key."""
        override = make_override(patch={"event_date": "2026-01-14"})

        result = apply_override(base_occurrences(make_definition(), ["2026-01-12"])[0], override)

        assert result.identity_key == "2026-01-12"
        assert result.effective_fields["event_date"] == "2026-01-14"
