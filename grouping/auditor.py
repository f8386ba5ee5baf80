"""
Violation Auditor.

Evaluates an assignment against the hard constraints, collects the
allocator's and cluster builder's findings, and reconciles them with the
camp's existing ConstraintViolation records. Records are never deleted, only
transitioned from unresolved to resolved.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from grouping.errors import ViolationAlreadyResolvedError
from grouping.models import (
    GROUP_SCOPED_VIOLATIONS,
    CampGroup,
    CamperSessionEntry,
    ConstraintViolation,
    ResolutionType,
    ViolationFinding,
    ViolationSeverity,
    ViolationType,
    utc_now,
)
from grouping.utils.grades import format_grade, format_grade_range

logger = logging.getLogger(__name__)

SUPPRESSING_RESOLUTIONS = frozenset({ResolutionType.ACCEPTED, ResolutionType.DISMISSED})

ViolationScope = Callable[[ConstraintViolation], bool]


def acceptance_covers(accepted: ConstraintViolation, finding: ViolationFinding) -> bool:
    """True if an accepted or dismissed record still covers a finding with its fingerprint.

    A group-scoped acceptance holds only while the group's members are a
    subset of the members it was accepted with.
    """
    if finding.violation_type not in GROUP_SCOPED_VIOLATIONS:
        return True
    return set(finding.affected_camper_ids) <= set(accepted.affected_camper_ids)


def resolve_violation(
    violation: ConstraintViolation,
    resolution_type: ResolutionType,
    resolved_by: str | None = None,
    note: str | None = None,
) -> ConstraintViolation:
    """Return a resolved copy of an unresolved violation.

    Raises:
        ViolationAlreadyResolvedError: If the violation is already resolved
    """
    if violation.resolved:
        previous = violation.resolution_type.value if violation.resolution_type else "unknown"
        raise ViolationAlreadyResolvedError(f"Violation {violation.id} was already resolved as {previous}")
    return violation.model_copy(
        update={
            "resolved": True,
            "resolved_by": resolved_by,
            "resolved_at": utc_now(),
            "resolution_type": resolution_type,
            "resolution_note": note,
        }
    )


def summarize_violations(violations: Iterable[ConstraintViolation]) -> dict[str, int]:
    """Count unresolved violations per type and per severity."""
    summary: Counter[str] = Counter()
    for violation in violations:
        if violation.resolved:
            continue
        summary[violation.violation_type.value] += 1
        summary[violation.severity.value] += 1
        summary["total"] += 1
    return dict(summary)


def violations_by_group(violations: Iterable[ConstraintViolation]) -> dict[str, list[ConstraintViolation]]:
    """Unresolved group-scoped violations keyed by affected group id."""
    grouped: dict[str, list[ConstraintViolation]] = defaultdict(list)
    for violation in violations:
        if not violation.resolved and violation.affected_group_id:
            grouped[violation.affected_group_id].append(violation)
    return dict(grouped)


@dataclass
class ReconciliationResult:
    """How a set of findings changed the camp's violation records."""

    created: list[ConstraintViolation] = field(default_factory=list)
    kept: list[ConstraintViolation] = field(default_factory=list)
    resolved: list[ConstraintViolation] = field(default_factory=list)
    suppressed: list[ViolationFinding] = field(default_factory=list)

    @property
    def active(self) -> list[ConstraintViolation]:
        """Violations that describe the current state (created or still open)."""
        return [*self.created, *self.kept]

    @property
    def to_write(self) -> list[ConstraintViolation]:
        return [*self.created, *self.kept, *self.resolved]


class ViolationAuditor:
    """Derives violations for one camp's constraints."""

    def __init__(self, max_group_size: int, max_grade_spread: int):
        self.max_group_size = max_group_size
        self.max_grade_spread = max_grade_spread

    def audit_groups(
        self,
        groups: Sequence[CampGroup],
        entries: Sequence[CamperSessionEntry],
    ) -> list[ViolationFinding]:
        """size_exceeded / grade_spread_exceeded from live group stats."""
        findings = []
        for group in sorted(groups, key=lambda g: g.group_number):
            members = sorted(
                (e for e in entries if e.assigned_group_id == group.id),
                key=lambda e: (e.grade_validated, e.id),
            )
            member_ids = [m.id for m in members]

            if group.camper_count > self.max_group_size:
                findings.append(
                    ViolationFinding(
                        violation_type=ViolationType.SIZE_EXCEEDED,
                        severity=ViolationSeverity.HARD,
                        affected_group_id=group.id,
                        affected_camper_ids=member_ids,
                        title=f"{group.display_name} is over capacity",
                        description=(
                            f"{group.display_name} has {group.camper_count} campers "
                            f"(max {self.max_group_size})"
                        ),
                        suggested_resolution=(
                            f"Move {group.camper_count - self.max_group_size} camper(s) to another group"
                        ),
                        details={"camper_count": group.camper_count, "max_group_size": self.max_group_size},
                    )
                )

            if group.grade_spread > self.max_grade_spread and group.min_grade is not None:
                lowest = [m.id for m in members if m.grade_validated == group.min_grade]
                highest = [m.id for m in members if m.grade_validated == group.max_grade]
                findings.append(
                    ViolationFinding(
                        violation_type=ViolationType.GRADE_SPREAD_EXCEEDED,
                        severity=ViolationSeverity.HARD,
                        affected_group_id=group.id,
                        affected_camper_ids=member_ids,
                        title=f"{group.display_name} spans too many grades",
                        description=(
                            f"{group.display_name} spans "
                            f"{format_grade_range(group.min_grade, group.max_grade)} "  # type: ignore[arg-type]
                            f"({group.grade_spread} grades, max {self.max_grade_spread})"
                        ),
                        suggested_resolution="Move the youngest or oldest campers to a closer-grade group",
                        details={
                            "grade_spread": group.grade_spread,
                            "max_grade_spread": self.max_grade_spread,
                            "lowest_grade_camper_ids": lowest,
                            "highest_grade_camper_ids": highest,
                        },
                    )
                )
        return findings

    def audit_grade_discrepancies(self, entries: Sequence[CamperSessionEntry]) -> list[ViolationFinding]:
        """grade_discrepancy warnings for unresolved normalizer flags."""
        findings = []
        for entry in sorted(entries, key=lambda e: e.id):
            if not entry.grade_discrepancy or entry.grade_discrepancy_resolved:
                continue
            findings.append(
                ViolationFinding(
                    violation_type=ViolationType.GRADE_DISCREPANCY,
                    severity=ViolationSeverity.WARNING,
                    affected_camper_ids=[entry.id],
                    title=f"Grade mismatch for {entry.full_name}",
                    description=(
                        f"Registration says '{entry.grade_from_registration}' but date of birth implies "
                        f"{format_grade(entry.grade_computed_from_dob)}; using {format_grade(entry.grade_validated)}"
                    ),
                    suggested_resolution="Confirm the camper's grade with the family",
                    details={
                        "grade_from_registration": entry.grade_from_registration,
                        "grade_computed_from_dob": entry.grade_computed_from_dob,
                        "grade_validated": entry.grade_validated,
                    },
                )
            )
        return findings

    def audit(
        self,
        groups: Sequence[CampGroup],
        entries: Sequence[CamperSessionEntry],
        bookkeeping: Iterable[ViolationFinding] = (),
    ) -> list[ViolationFinding]:
        """All findings for the current state, one per fingerprint."""
        findings: dict[str, ViolationFinding] = {}
        for finding in [*self.audit_groups(groups, entries), *bookkeeping, *self.audit_grade_discrepancies(entries)]:
            findings.setdefault(finding.fingerprint, finding)

        self._check_hard_constraint_soundness(groups, findings.values())
        return list(findings.values())

    def _check_hard_constraint_soundness(
        self,
        groups: Sequence[CampGroup],
        findings: Iterable[ViolationFinding],
    ) -> None:
        flagged = {
            f.affected_group_id
            for f in findings
            if f.violation_type in (ViolationType.SIZE_EXCEEDED, ViolationType.GRADE_SPREAD_EXCEEDED)
        }
        for group in groups:
            if group.has_hard_violations and group.id not in flagged:
                logger.error(f"{group.display_name} has hard violations but no finding was produced")

    def reconcile(
        self,
        camp_id: str,
        findings: Sequence[ViolationFinding],
        existing: Sequence[ConstraintViolation],
        grouping_run_id: str | None = None,
        resolution_type: ResolutionType = ResolutionType.AUTO_FIXED,
        resolved_by: str | None = None,
        scope: ViolationScope | None = None,
    ) -> ReconciliationResult:
        """Match findings to existing records by fingerprint.

        - an open record with the same fingerprint is kept (and refreshed)
        - a record accepted or dismissed earlier suppresses the finding,
          as long as the accepted condition has not grown
        - otherwise a new record is created
        - open records in scope with no matching finding are resolved

        Args:
            scope: Limits which open records may be resolved; None means all.
        """
        result = ReconciliationResult()
        open_by_fingerprint = {v.fingerprint: v for v in existing if not v.resolved}
        accepted_by_fingerprint: dict[str, list[ConstraintViolation]] = defaultdict(list)
        for violation in existing:
            if violation.resolved and violation.resolution_type in SUPPRESSING_RESOLUTIONS:
                accepted_by_fingerprint[violation.fingerprint].append(violation)
        matched: set[str] = set()

        for finding in findings:
            fingerprint = finding.fingerprint
            current = open_by_fingerprint.get(fingerprint)
            if current is not None:
                matched.add(fingerprint)
                result.kept.append(
                    current.model_copy(
                        update={
                            "affected_camper_ids": finding.affected_camper_ids,
                            "title": finding.title,
                            "description": finding.description,
                            "suggested_resolution": finding.suggested_resolution,
                            "details": finding.details,
                        }
                    )
                )
            elif any(acceptance_covers(v, finding) for v in accepted_by_fingerprint.get(fingerprint, [])):
                result.suppressed.append(finding)
            else:
                result.created.append(finding.to_violation(camp_id, grouping_run_id))

        for fingerprint, violation in open_by_fingerprint.items():
            if fingerprint in matched or (scope is not None and not scope(violation)):
                continue
            result.resolved.append(
                resolve_violation(violation, resolution_type, resolved_by, note="Condition no longer present")
            )

        logger.info(
            f"Violations for camp {camp_id}: {len(result.created)} new, {len(result.kept)} still open, "
            f"{len(result.resolved)} resolved ({resolution_type.value}), {len(result.suppressed)} previously accepted"
        )
        return result
