"""
Group report for staff.

One section per group with its roster sorted by name, grade range and which
requested friends ended up together, followed by the unplaced campers and a
camp-level summary.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from grouping.auditor import summarize_violations, violations_by_group
from grouping.models import (
    AssignmentType,
    CampGroupingState,
    CamperSessionEntry,
    GroupingStatus,
    ResolutionType,
    ViolationSeverity,
)
from grouping.utils.grades import format_grade, format_grade_range


class ReportCamper(BaseModel):
    camper_id: str
    name: str
    grade: int
    grade_display: str
    age: int
    friends_in_group: list[str] = Field(default_factory=list)
    assignment_type: AssignmentType | None = None
    is_late_registration: bool = False
    grade_discrepancy: bool = False
    notes: list[str] = Field(default_factory=list)


class GroupReportSection(BaseModel):
    group_id: str
    group_number: int
    name: str
    color: str | None = None
    camper_count: int
    grade_range: str
    size_violation: bool = False
    grade_violation: bool = False
    open_issues: list[str] = Field(default_factory=list)
    campers: list[ReportCamper] = Field(default_factory=list)


class ReportSummary(BaseModel):
    total_campers: int
    placed_campers: int
    unplaced_campers: int
    counts_per_group: dict[str, int] = Field(default_factory=dict)
    all_constraints_satisfied: bool
    open_violations: dict[str, int] = Field(default_factory=dict)
    accepted_exceptions: list[str] = Field(default_factory=list)


class GroupReport(BaseModel):
    camp_id: str
    camp_name: str
    grouping_status: GroupingStatus
    groups: list[GroupReportSection] = Field(default_factory=list)
    unplaced: list[ReportCamper] = Field(default_factory=list)
    summary: ReportSummary


def _name_key(entry: CamperSessionEntry) -> tuple[str, str, str]:
    return (entry.last_name.lower(), entry.first_name.lower(), entry.id)


def _friends_in_group(entry: CamperSessionEntry, groupmates: list[CamperSessionEntry]) -> list[str]:
    """Groupmates this camper asked for, or who asked for this camper."""
    friends = []
    for mate in groupmates:
        if mate.id == entry.id:
            continue
        if mate.athlete_id in entry.friend_request_athlete_ids or entry.athlete_id in mate.friend_request_athlete_ids:
            friends.append(mate.full_name)
    return sorted(friends)


def _report_camper(entry: CamperSessionEntry, groupmates: list[CamperSessionEntry]) -> ReportCamper:
    notes = [text for text in (entry.medical_notes, entry.allergies, entry.special_considerations) if text]
    return ReportCamper(
        camper_id=entry.id,
        name=entry.full_name,
        grade=entry.grade_validated,
        grade_display=entry.grade_display or format_grade(entry.grade_validated),
        age=entry.age_at_camp_start,
        friends_in_group=_friends_in_group(entry, groupmates),
        assignment_type=entry.assignment_type,
        is_late_registration=entry.is_late_registration,
        grade_discrepancy=entry.grade_discrepancy and not entry.grade_discrepancy_resolved,
        notes=notes,
    )


def build_group_report(state: CampGroupingState) -> GroupReport:
    """Build the staff report from a camp's current grouping state."""
    members: dict[str, list[CamperSessionEntry]] = {g.id: [] for g in state.groups}
    unplaced: list[CamperSessionEntry] = []
    for entry in state.entries:
        if entry.assigned_group_id in members:
            members[entry.assigned_group_id].append(entry)
        else:
            unplaced.append(entry)

    issues_by_group = violations_by_group(state.violations)
    sections = []
    for group in sorted(state.groups, key=lambda g: g.group_number):
        roster = sorted(members[group.id], key=_name_key)
        grades = [e.grade_validated for e in roster]
        sections.append(
            GroupReportSection(
                group_id=group.id,
                group_number=group.group_number,
                name=group.display_name,
                color=group.group_color,
                camper_count=len(roster),
                grade_range=format_grade_range(min(grades), max(grades)) if grades else "",
                size_violation=group.size_violation,
                grade_violation=group.grade_violation,
                open_issues=[v.title for v in issues_by_group.get(group.id, [])],
                campers=[_report_camper(e, roster) for e in roster],
            )
        )

    unresolved = state.unresolved_violations
    hard_open = any(v.severity == ViolationSeverity.HARD for v in unresolved)
    accepted = [
        v.title + (f" ({v.resolution_note})" if v.resolution_note else "")
        for v in state.violations
        if v.resolved and v.resolution_type == ResolutionType.ACCEPTED
    ]

    summary = ReportSummary(
        total_campers=len(state.entries),
        placed_campers=len(state.entries) - len(unplaced),
        unplaced_campers=len(unplaced),
        counts_per_group={s.name: s.camper_count for s in sections},
        all_constraints_satisfied=not unplaced
        and not hard_open
        and not any(s.size_violation or s.grade_violation for s in sections),
        open_violations=summarize_violations(unresolved),
        accepted_exceptions=accepted,
    )

    return GroupReport(
        camp_id=state.camp.id,
        camp_name=state.camp.name,
        grouping_status=state.camp.grouping_status,
        groups=sections,
        unplaced=[_report_camper(e, []) for e in sorted(unplaced, key=_name_key)],
        summary=summary,
    )


def format_report(report: GroupReport) -> str:
    """Plain text rendering used by the CLI."""
    lines = [f"{report.camp_name or report.camp_id} ({report.grouping_status.value})", ""]
    for section in report.groups:
        header = f"{section.name}: {section.camper_count} campers"
        if section.grade_range:
            header += f", {section.grade_range}"
        lines.append(header)
        for issue in section.open_issues:
            lines.append(f"  ! {issue}")
        for camper in section.campers:
            line = f"  - {camper.name} ({camper.grade_display}, age {camper.age})"
            if camper.friends_in_group:
                line += f" with {', '.join(camper.friends_in_group)}"
            lines.append(line)
        lines.append("")

    if report.unplaced:
        lines.append(f"Unplaced: {len(report.unplaced)}")
        lines.extend(f"  - {c.name} ({c.grade_display})" for c in report.unplaced)
        lines.append("")

    summary = report.summary
    status = "all constraints satisfied" if summary.all_constraints_satisfied else "needs review"
    lines.append(f"{summary.placed_campers}/{summary.total_campers} placed, {status}")
    for exception in summary.accepted_exceptions:
        lines.append(f"  accepted: {exception}")
    return "\n".join(lines)
