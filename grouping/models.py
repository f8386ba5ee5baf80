"""
Domain models for the camp grouping engine.

Roster inputs (CampRecord, RosterRecord) are read-only snapshots owned by the
registration system. Everything else is grouping state owned per camp.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

ALGORITHM_VERSION = "cluster-first-v1"


def new_record_id() -> str:
    """Generate a 15 character id accepted by PocketBase as a record id."""
    return uuid4().hex[:15]


def utc_now() -> datetime:
    return datetime.now(UTC)


class GroupingStatus(str, Enum):
    PENDING = "pending"
    AUTO_GROUPED = "auto_grouped"
    REVIEWED = "reviewed"
    FINALIZED = "finalized"


class AssignmentType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    OVERRIDE = "override"


class RunType(str, Enum):
    INITIAL = "initial"
    RERUN = "rerun"
    INCREMENTAL = "incremental"


class ViolationType(str, Enum):
    SIZE_EXCEEDED = "size_exceeded"
    GRADE_SPREAD_EXCEEDED = "grade_spread_exceeded"
    FRIEND_GROUP_SPLIT = "friend_group_split"
    FRIEND_GROUP_TOO_LARGE = "friend_group_too_large"
    IMPOSSIBLE_PLACEMENT = "impossible_placement"
    GRADE_DISCREPANCY = "grade_discrepancy"


class ViolationSeverity(str, Enum):
    WARNING = "warning"
    HARD = "hard"


class ResolutionType(str, Enum):
    AUTO_FIXED = "auto_fixed"
    MANUAL_OVERRIDE = "manual_override"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


PINNED_ASSIGNMENT_TYPES = frozenset({AssignmentType.MANUAL, AssignmentType.OVERRIDE})

# Hex colors and names handed out to groups by group number
GROUP_COLORS = [
    "#CCFF00",
    "#FF2DCE",
    "#6F00D8",
    "#22C55E",
    "#F59E0B",
    "#06B6D4",
    "#EC4899",
    "#8B5CF6",
    "#10B981",
    "#F97316",
]

GROUP_NAMES = [
    "Lightning",
    "Thunder",
    "Storm",
    "Blaze",
    "Phoenix",
    "Titans",
    "Falcons",
    "Panthers",
    "Vipers",
    "Wolves",
]


# =============================================================================
# Roster inputs (read-only)
# =============================================================================


class CampRecord(BaseModel):
    """Camp session as configured by the registration system.

    Constraint fields left as None fall back to the ConfigLoader values.
    """

    id: str
    name: str = ""
    start_date: date
    end_date: date | None = None
    location: str | None = None
    max_group_size: int | None = None
    num_groups: int | None = None
    max_grade_spread: int | None = None
    grouping_status: GroupingStatus = GroupingStatus.PENDING
    grouping_finalized_at: datetime | None = None
    grouping_finalized_by: str | None = None


class RosterRecord(BaseModel):
    """One confirmed registration joined with its athlete record."""

    registration_id: str
    athlete_id: str
    first_name: str
    last_name: str
    date_of_birth: date | str | None = None
    grade_from_registration: str | None = None
    friend_request_athlete_ids: list[str] = Field(default_factory=list)
    friend_request_names: list[str] = Field(default_factory=list)
    registered_at: datetime
    medical_notes: str | None = None
    allergies: str | None = None
    special_considerations: str | None = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def blank_dob_is_missing(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("friend_request_names", mode="before")
    @classmethod
    def split_friend_names(cls, v: Any) -> Any:
        """Accept the comma/semicolon/newline separated text parents type in."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part for part in re.split(r"[,;\n]+", v) if part.strip()]
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# =============================================================================
# Grouping state
# =============================================================================


class CamperSessionEntry(BaseModel):
    """Normalized roster entry for one athlete in one camp."""

    id: str = Field(default_factory=new_record_id)
    camp_id: str
    athlete_id: str
    registration_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    registered_at: datetime

    age_at_camp_start: int
    age_months_at_camp_start: int
    grade_from_registration: str | None = None
    grade_computed_from_dob: int
    grade_validated: int
    grade_display: str = ""
    grade_discrepancy: bool = False
    grade_discrepancy_resolved: bool = False
    grade_discrepancy_resolution: str | None = None

    friend_request_names: list[str] = Field(default_factory=list)
    friend_request_athlete_ids: list[str] = Field(default_factory=list)
    friend_group_id: str | None = None

    is_late_registration: bool = False
    medical_notes: str | None = None
    allergies: str | None = None
    special_considerations: str | None = None

    assigned_group_id: str | None = None
    assignment_type: AssignmentType | None = None
    assignment_reason: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_pinned(self) -> bool:
        return self.assigned_group_id is not None and self.assignment_type in PINNED_ASSIGNMENT_TYPES


class FriendCluster(BaseModel):
    """Connected component of the friend-request graph."""

    id: str
    camp_id: str
    cluster_number: int
    member_ids: list[str]
    min_grade: int
    max_grade: int
    exceeds_grade_constraint: bool = False
    exceeds_size_constraint: bool = False
    placement_notes: list[str] = Field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    @property
    def grade_spread(self) -> int:
        return self.max_grade - self.min_grade

    @property
    def can_be_placed_intact(self) -> bool:
        return not (self.exceeds_grade_constraint or self.exceeds_size_constraint)

    @property
    def is_singleton(self) -> bool:
        return len(self.member_ids) == 1


class CampGroup(BaseModel):
    """One of the camp's N destination groups with live membership stats."""

    id: str = Field(default_factory=new_record_id)
    camp_id: str
    group_number: int = Field(ge=1)
    group_name: str | None = None
    group_color: str | None = None

    camper_count: int = 0
    min_grade: int | None = None
    max_grade: int | None = None
    grade_spread: int = 0
    size_violation: bool = False
    grade_violation: bool = False

    @property
    def has_hard_violations(self) -> bool:
        return self.size_violation or self.grade_violation

    @property
    def display_name(self) -> str:
        return self.group_name or f"Group {self.group_number}"


class GroupAssignment(BaseModel):
    """Immutable audit record of one camper move."""

    id: str = Field(default_factory=new_record_id)
    camp_id: str
    grouping_run_id: str | None = None
    camper_session_id: str
    from_group_id: str | None = None
    to_group_id: str | None = None
    assignment_type: AssignmentType
    reason: str
    caused_size_violation: bool = False
    caused_grade_violation: bool = False
    caused_friend_violation: bool = False
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class ConstraintViolation(BaseModel):
    """Typed finding with a resolution lifecycle. Never deleted."""

    id: str = Field(default_factory=new_record_id)
    camp_id: str
    grouping_run_id: str | None = None
    violation_type: ViolationType
    severity: ViolationSeverity
    fingerprint: str

    affected_group_id: str | None = None
    affected_friend_group_id: str | None = None
    affected_camper_ids: list[str] = Field(default_factory=list)

    title: str
    description: str
    suggested_resolution: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_type: ResolutionType | None = None
    resolution_note: str | None = None

    created_at: datetime = Field(default_factory=utc_now)


GROUP_SCOPED_VIOLATIONS = frozenset({ViolationType.SIZE_EXCEEDED, ViolationType.GRADE_SPREAD_EXCEEDED})


def violation_fingerprint(
    violation_type: ViolationType,
    group_id: str | None,
    camper_ids: list[str],
) -> str:
    """Stable key of a violated condition.

    Group-scoped rules are keyed by group alone so that a group that stays
    oversized keeps one record while its membership changes. Acceptance of
    such a record covers only the members it was accepted with.
    """
    key_ids = [] if violation_type in GROUP_SCOPED_VIOLATIONS else sorted(camper_ids)
    return f"{violation_type.value}|{group_id or '-'}|{','.join(key_ids)}"


class ViolationFinding(BaseModel):
    """A violated condition detected by the cluster builder, allocator or auditor.

    Becomes a ConstraintViolation unless an existing record with the same
    fingerprint already covers it.
    """

    violation_type: ViolationType
    severity: ViolationSeverity
    affected_group_id: str | None = None
    affected_friend_group_id: str | None = None
    affected_camper_ids: list[str] = Field(default_factory=list)
    title: str
    description: str
    suggested_resolution: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def fingerprint(self) -> str:
        return violation_fingerprint(self.violation_type, self.affected_group_id, self.affected_camper_ids)

    def to_violation(self, camp_id: str, grouping_run_id: str | None = None) -> ConstraintViolation:
        return ConstraintViolation(
            camp_id=camp_id,
            grouping_run_id=grouping_run_id,
            fingerprint=self.fingerprint,
            **self.model_dump(),
        )


class GroupingRun(BaseModel):
    """One immutable record per allocator execution."""

    id: str = Field(default_factory=new_record_id)
    camp_id: str
    run_type: RunType
    triggered_by: str | None = None
    trigger_reason: str = ""

    total_campers: int = 0
    total_friend_groups: int = 0
    late_registrations: int = 0
    grade_discrepancies: int = 0

    max_group_size: int
    num_groups: int
    max_grade_spread: int

    algorithm_version: str = ALGORITHM_VERSION
    execution_time_ms: int = 0
    campers_auto_placed: int = 0
    friend_groups_placed_intact: int = 0
    friend_groups_split: int = 0
    constraint_violations: int = 0

    success: bool = True
    error_message: str | None = None
    warnings: list[str] = Field(default_factory=list)
    violation_summary: dict[str, int] = Field(default_factory=dict)

    preserved_manual_overrides_count: int = 0
    assignment_ids: list[str] = Field(default_factory=list)
    violation_ids: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)

    @property
    def preserved_manual_overrides(self) -> bool:
        return self.preserved_manual_overrides_count > 0


class CampGroupingState(BaseModel):
    """Everything the engine owns for one camp, as read at the start of an operation."""

    camp: CampRecord
    entries: list[CamperSessionEntry] = Field(default_factory=list)
    groups: list[CampGroup] = Field(default_factory=list)
    violations: list[ConstraintViolation] = Field(default_factory=list)

    @property
    def entry_by_id(self) -> dict[str, CamperSessionEntry]:
        return {e.id: e for e in self.entries}

    @property
    def group_by_id(self) -> dict[str, CampGroup]:
        return {g.id: g for g in self.groups}

    @property
    def unresolved_violations(self) -> list[ConstraintViolation]:
        return [v for v in self.violations if not v.resolved]


class GroupingWriteSet(BaseModel):
    """All writes of one operation, applied atomically by the store."""

    camp_id: str
    upsert_entries: list[CamperSessionEntry] = Field(default_factory=list)
    delete_entry_ids: list[str] = Field(default_factory=list)
    upsert_groups: list[CampGroup] = Field(default_factory=list)
    delete_group_ids: list[str] = Field(default_factory=list)
    new_assignments: list[GroupAssignment] = Field(default_factory=list)
    upsert_violations: list[ConstraintViolation] = Field(default_factory=list)
    run: GroupingRun | None = None
    camp_status: GroupingStatus | None = None
    camp_finalized_by: str | None = None
    camp_finalized_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.upsert_entries
            or self.delete_entry_ids
            or self.upsert_groups
            or self.delete_group_ids
            or self.new_assignments
            or self.upsert_violations
            or self.run
            or self.camp_status
        )


class MoveResult(BaseModel):
    """Outcome of a manual move."""

    entry: CamperSessionEntry
    assignment: GroupAssignment | None = None
    groups: list[CampGroup] = Field(default_factory=list)
    raised_violations: list[ConstraintViolation] = Field(default_factory=list)
    resolved_violations: list[ConstraintViolation] = Field(default_factory=list)
