"""Tests for the camper session normalizer."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from grouping.errors import MissingDateOfBirthError
from grouping.models import AssignmentType, RosterRecord
from grouping.normalizer import CamperSessionNormalizer, validate_grade

from .factories import athlete, create_camp, create_record


@pytest.fixture
def camp():
    return create_camp()


@pytest.fixture
def normalizer():
    return CamperSessionNormalizer()


class TestValidateGrade:
    def test_registration_grade_wins_when_close(self):
        assert validate_grade(3, 5) == (3, True)

    def test_dob_grade_wins_when_far_apart(self):
        assert validate_grade(2, 8) == (8, True)

    def test_threshold_is_inclusive(self):
        assert validate_grade(2, 5, fallback_threshold=3) == (2, True)

    def test_missing_registration_grade(self):
        assert validate_grade(None, 4) == (4, False)

    def test_agreeing_grades(self):
        assert validate_grade(4, 4) == (4, False)


class TestNormalizeRecord:
    """Single registration to CamperSessionEntry."""

    def test_grade_discrepancy_keeps_registration_grade(self, camp, normalizer):
        """Registration says 3rd, DOB implies 5th: flagged, registration grade used."""
        entry = normalizer.normalize_record(camp, create_record(1, grade=5, grade_text="3rd"))

        assert entry.grade_computed_from_dob == 5
        assert entry.grade_validated == 3
        assert entry.grade_discrepancy is True
        assert entry.grade_display == "3rd"

    def test_wildly_inconsistent_grade_falls_back_to_dob(self, camp, normalizer):
        entry = normalizer.normalize_record(camp, create_record(1, grade=8, grade_text="2nd"))

        assert entry.grade_validated == 8
        assert entry.grade_discrepancy is True

    def test_no_registration_grade(self, camp, normalizer):
        entry = normalizer.normalize_record(camp, create_record(1, grade=4))

        assert entry.grade_validated == 4
        assert entry.grade_discrepancy is False

    def test_unparseable_registration_grade_is_ignored(self, camp, normalizer):
        entry = normalizer.normalize_record(camp, create_record(1, grade=4, grade_text="n/a"))

        assert entry.grade_validated == 4
        assert entry.grade_discrepancy is False

    def test_age_at_camp_start(self, camp, normalizer):
        entry = normalizer.normalize_record(camp, create_record(1, grade=3))

        assert entry.age_at_camp_start == 9
        assert entry.age_months_at_camp_start == 111

    def test_missing_date_of_birth_is_rejected(self, camp, normalizer):
        record = create_record(1).model_copy(update={"date_of_birth": None})

        with pytest.raises(MissingDateOfBirthError) as exc_info:
            normalizer.normalize_record(camp, record)

        assert exc_info.value.registration_id == "reg001"
        assert exc_info.value.athlete_id == athlete(1)

    def test_unparseable_date_of_birth_is_rejected(self, camp, normalizer):
        record = create_record(1).model_copy(update={"date_of_birth": "sometime in 2016"})

        with pytest.raises(MissingDateOfBirthError, match="sometime in 2016"):
            normalizer.normalize_record(camp, record)

    def test_blank_date_of_birth_becomes_missing(self):
        data = {**create_record(1).model_dump(), "date_of_birth": "  "}

        assert RosterRecord.model_validate(data).date_of_birth is None

    def test_late_registration(self, camp, normalizer):
        record = create_record(1, registered_at=datetime(2025, 7, 3, 12, 0, tzinfo=UTC))

        assert normalizer.normalize_record(camp, record).is_late_registration is True

    def test_registration_exactly_at_cutoff_is_not_late(self, camp, normalizer):
        record = create_record(1, registered_at=datetime(2025, 6, 30, 12, 0, tzinfo=UTC))

        assert normalizer.normalize_record(camp, record).is_late_registration is False

    def test_existing_entry_keeps_id_and_assignment(self, camp, normalizer):
        first = normalizer.normalize_record(camp, create_record(1))
        first.assigned_group_id = "group_1"
        first.assignment_type = AssignmentType.MANUAL
        first.assignment_reason = "Sibling request"

        again = normalizer.normalize_record(camp, create_record(1), existing=first)

        assert again.id == first.id
        assert again.assigned_group_id == "group_1"
        assert again.assignment_type == AssignmentType.MANUAL
        assert again.assignment_reason == "Sibling request"

    def test_resolved_discrepancy_survives_while_discrepancy_persists(self, camp, normalizer):
        record = create_record(1, grade=5, grade_text="3rd")
        first = normalizer.normalize_record(camp, record)
        first.grade_discrepancy_resolved = True
        first.grade_discrepancy_resolution = "Parent confirmed 3rd grade"

        again = normalizer.normalize_record(camp, record, existing=first)

        assert again.grade_discrepancy_resolved is True
        assert again.grade_discrepancy_resolution == "Parent confirmed 3rd grade"


class TestNormalizeRoster:
    """Whole-roster normalization."""

    def test_one_entry_per_registration(self, camp, normalizer):
        result = normalizer.normalize(camp, [create_record(n) for n in range(1, 6)])

        assert len(result.entries) == 5
        assert {e.athlete_id for e in result.entries} == {athlete(n) for n in range(1, 6)}

    def test_entries_in_registration_order(self, camp, normalizer):
        late = create_record(1, registered_at=datetime(2025, 5, 1, tzinfo=UTC))
        early = create_record(2, registered_at=datetime(2025, 2, 1, tzinfo=UTC))

        result = normalizer.normalize(camp, [late, early])

        assert [e.athlete_id for e in result.entries] == [athlete(2), athlete(1)]

    def test_duplicate_registration_is_ignored_with_warning(self, camp, normalizer):
        original = create_record(1)
        duplicate = original.model_copy(
            update={"registration_id": "reg999", "registered_at": datetime(2025, 4, 1, tzinfo=UTC)}
        )

        result = normalizer.normalize(camp, [original, duplicate])

        assert len(result.entries) == 1
        assert result.entries[0].registration_id == "reg001"
        assert any("reg999" in w for w in result.warnings)

    def test_friend_names_resolved_to_athlete_ids(self, camp, normalizer):
        records = [
            create_record(1, friend_names=["Camper2 Test002"]),
            create_record(2),
        ]

        result = normalizer.normalize(camp, records)

        assert result.entries[0].friend_request_athlete_ids == [athlete(2)]

    def test_unmatched_friend_name_warns(self, camp, normalizer):
        result = normalizer.normalize(camp, [create_record(1, friend_names=["Nobody Known"])])

        assert result.entries[0].friend_request_athlete_ids == []
        assert any("Could not match friend request 'Nobody Known'" in w for w in result.warnings)

    def test_self_and_duplicate_requests_dropped(self, camp, normalizer):
        records = [
            create_record(1, friends=[1, 2, 2], friend_names=["Camper2 Test002"]),
            create_record(2),
        ]

        result = normalizer.normalize(camp, records)

        assert result.entries[0].friend_request_athlete_ids == [athlete(2)]

    def test_request_for_camper_outside_camp_is_kept_with_warning(self, camp, normalizer):
        result = normalizer.normalize(camp, [create_record(1, friends=[42])])

        assert result.entries[0].friend_request_athlete_ids == [athlete(42)]
        assert any(athlete(42) in w for w in result.warnings)

    def test_removed_entries(self, camp, normalizer):
        first = normalizer.normalize(camp, [create_record(1), create_record(2)])

        second = normalizer.normalize(camp, [create_record(1)], existing_entries=first.entries)

        assert [e.athlete_id for e in second.removed_entries] == [athlete(2)]
        assert second.entries[0].id == first.entries[0].id

    def test_counts(self, camp, normalizer):
        records = [
            create_record(1, grade=5, grade_text="3rd"),
            create_record(2, registered_at=datetime(2025, 7, 5, tzinfo=UTC)),
            create_record(3),
        ]

        result = normalizer.normalize(camp, records)

        assert result.grade_discrepancies == 1
        assert result.late_registrations == 1

    def test_missing_dob_fails_whole_roster(self, camp, normalizer):
        records = [create_record(1), create_record(2).model_copy(update={"date_of_birth": None})]

        with pytest.raises(MissingDateOfBirthError):
            normalizer.normalize(camp, records)
