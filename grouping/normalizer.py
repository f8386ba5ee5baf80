"""
Camper Session Normalizer.

Turns confirmed registrations (joined with athlete records) into one
CamperSessionEntry per athlete: DOB-derived and validated grade, age at camp
start, late-registration flag and resolved friend requests. Existing entries
are merged by athlete id so that assignments and discrepancy resolutions
survive re-normalization.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from grouping.errors import MissingDateOfBirthError
from grouping.models import CampRecord, CamperSessionEntry, RosterRecord
from grouping.utils.grades import (
    DEFAULT_CUTOFF_MONTH,
    age_in_months,
    age_in_years,
    compute_grade_from_dob,
    format_grade,
    parse_date_of_birth,
    parse_grade,
)
from grouping.utils.names import NameCandidate, match_friend_name

logger = logging.getLogger(__name__)

DEFAULT_LATE_REGISTRATION_DAYS = 7
DEFAULT_GRADE_FALLBACK_THRESHOLD = 3


@dataclass
class NormalizationResult:
    """Entries for the current roster plus entries to remove."""

    entries: list[CamperSessionEntry] = field(default_factory=list)
    removed_entries: list[CamperSessionEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def late_registrations(self) -> int:
        return sum(1 for e in self.entries if e.is_late_registration)

    @property
    def grade_discrepancies(self) -> int:
        return sum(1 for e in self.entries if e.grade_discrepancy)


def validate_grade(
    registration_grade: int | None,
    computed_grade: int,
    fallback_threshold: int = DEFAULT_GRADE_FALLBACK_THRESHOLD,
) -> tuple[int, bool]:
    """Pick the grade used for constraints.

    Returns (grade_validated, grade_discrepancy). The parent-entered grade wins
    unless it is more than fallback_threshold grades away from the DOB grade.
    """
    if registration_grade is None:
        return computed_grade, False

    discrepancy = registration_grade != computed_grade
    if abs(registration_grade - computed_grade) > fallback_threshold:
        return computed_grade, discrepancy
    return registration_grade, discrepancy


class CamperSessionNormalizer:
    """Builds CamperSessionEntries for one camp."""

    def __init__(
        self,
        school_year_cutoff_month: int = DEFAULT_CUTOFF_MONTH,
        late_registration_days: int = DEFAULT_LATE_REGISTRATION_DAYS,
        grade_fallback_threshold: int = DEFAULT_GRADE_FALLBACK_THRESHOLD,
    ):
        self.school_year_cutoff_month = school_year_cutoff_month
        self.late_registration_days = late_registration_days
        self.grade_fallback_threshold = grade_fallback_threshold

    def normalize_record(
        self,
        camp: CampRecord,
        record: RosterRecord,
        existing: CamperSessionEntry | None = None,
    ) -> CamperSessionEntry:
        """Normalize a single registration.

        Friend names are not resolved here; that needs the whole roster.

        Raises:
            MissingDateOfBirthError: If the date of birth is missing or unparseable
        """
        dob = parse_date_of_birth(record.date_of_birth)
        if dob is None:
            raise MissingDateOfBirthError(record.registration_id, record.athlete_id, record.date_of_birth)

        computed = compute_grade_from_dob(dob, camp.start_date, self.school_year_cutoff_month)
        parsed = parse_grade(record.grade_from_registration)
        if record.grade_from_registration and parsed is None:
            logger.debug(
                f"Unparseable registration grade '{record.grade_from_registration}' for "
                f"{record.full_name}, using DOB grade {computed}"
            )
        validated, discrepancy = validate_grade(parsed, computed, self.grade_fallback_threshold)

        days_before_start = (camp.start_date - record.registered_at.date()).days
        is_late = days_before_start < self.late_registration_days

        entry = CamperSessionEntry(
            camp_id=camp.id,
            athlete_id=record.athlete_id,
            registration_id=record.registration_id,
            first_name=record.first_name,
            last_name=record.last_name,
            date_of_birth=dob,
            registered_at=record.registered_at,
            age_at_camp_start=age_in_years(dob, camp.start_date),
            age_months_at_camp_start=age_in_months(dob, camp.start_date),
            grade_from_registration=record.grade_from_registration,
            grade_computed_from_dob=computed,
            grade_validated=validated,
            grade_display=format_grade(validated),
            grade_discrepancy=discrepancy,
            friend_request_names=[n.strip() for n in record.friend_request_names if n.strip()],
            friend_request_athlete_ids=list(record.friend_request_athlete_ids),
            is_late_registration=is_late,
            medical_notes=record.medical_notes,
            allergies=record.allergies,
            special_considerations=record.special_considerations,
        )

        if existing is not None:
            entry.id = existing.id
            entry.assigned_group_id = existing.assigned_group_id
            entry.assignment_type = existing.assignment_type
            entry.assignment_reason = existing.assignment_reason
            entry.friend_group_id = existing.friend_group_id
            if discrepancy and existing.grade_discrepancy_resolved:
                entry.grade_discrepancy_resolved = True
                entry.grade_discrepancy_resolution = existing.grade_discrepancy_resolution

        return entry

    def normalize(
        self,
        camp: CampRecord,
        roster: Iterable[RosterRecord],
        existing_entries: Iterable[CamperSessionEntry] = (),
    ) -> NormalizationResult:
        """Normalize a camp's confirmed roster.

        Raises:
            MissingDateOfBirthError: On the first registration without a usable DOB
        """
        result = NormalizationResult()
        existing_by_athlete = {e.athlete_id: e for e in existing_entries}

        seen_athletes: set[str] = set()
        for record in sorted(roster, key=lambda r: (r.registered_at, r.registration_id)):
            if record.athlete_id in seen_athletes:
                result.warnings.append(
                    f"Duplicate registration {record.registration_id} for athlete {record.athlete_id} ignored"
                )
                continue
            seen_athletes.add(record.athlete_id)
            result.entries.append(self.normalize_record(camp, record, existing_by_athlete.get(record.athlete_id)))

        result.removed_entries = [e for a, e in existing_by_athlete.items() if a not in seen_athletes]
        if result.removed_entries:
            logger.info(f"Camp {camp.id}: {len(result.removed_entries)} entries no longer on the confirmed roster")

        self._resolve_friend_requests(result)

        logger.info(
            f"Normalized {len(result.entries)} campers for camp {camp.id} "
            f"({result.late_registrations} late, {result.grade_discrepancies} grade discrepancies)"
        )
        return result

    def _resolve_friend_requests(self, result: NormalizationResult) -> None:
        """Merge name-based requests into friend_request_athlete_ids, in request order."""
        candidates = [NameCandidate(e.athlete_id, e.first_name, e.last_name) for e in result.entries]
        roster_ids = {e.athlete_id for e in result.entries}

        for entry in result.entries:
            others = [c for c in candidates if c.athlete_id != entry.athlete_id]
            resolved: list[str] = []

            for athlete_id in entry.friend_request_athlete_ids:
                if athlete_id == entry.athlete_id or athlete_id in resolved:
                    continue
                if athlete_id not in roster_ids:
                    result.warnings.append(
                        f"{entry.full_name} requested athlete {athlete_id}, who is not registered for this camp"
                    )
                resolved.append(athlete_id)

            for name in entry.friend_request_names:
                athlete_id = match_friend_name(name, others)
                if athlete_id is None:
                    result.warnings.append(f"Could not match friend request '{name}' from {entry.full_name}")
                    continue
                if athlete_id not in resolved:
                    resolved.append(athlete_id)

            entry.friend_request_athlete_ids = resolved
