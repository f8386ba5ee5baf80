"""
Group Allocator - greedy cluster-first bin packing with override pinning.

Algorithm:
    1. Pin campers with a manual/override assignment to a group that still
       exists. Incremental runs also keep every camper already placed.
    2. Seed each group's running state from those campers.
    3. Turn the unpinned members of each friend cluster into a placement
       unit; order units by size (desc), average grade (asc), cluster id.
    4. Place each unit intact in the eligible group with the most remaining
       capacity (lowest group number on ties), preferring a group that already
       holds pinned friends. If no group can take the unit, split it and place
       members one by one with the same rule.
    5. Campers no group can take stay unplaced and get an impossible_placement
       finding.
    6. Every change of assigned_group_id produces one GroupAssignment.

Identical input always produces identical output.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from statistics import mean

from grouping.allocator.constraint_logger import ConstraintLogger
from grouping.allocator.group_state import GroupState, recompute_all_groups
from grouping.graph.friend_clusters import ClusterAnalysis
from grouping.models import (
    AssignmentType,
    CampGroup,
    CamperSessionEntry,
    FriendCluster,
    GroupAssignment,
    RunType,
    ViolationFinding,
    ViolationSeverity,
    ViolationType,
)
from grouping.utils.grades import format_grade

logger = logging.getLogger(__name__)

UNPLACEABLE_REASON = "no group can take this camper without exceeding the size or grade spread limit"


def camper_sort_key(entry: CamperSessionEntry) -> tuple[int, str, str, str]:
    return (entry.grade_validated, entry.last_name.lower(), entry.first_name.lower(), entry.id)


def build_split_finding(
    cluster_id: str,
    title: str,
    members: Sequence[CamperSessionEntry],
    number_of: dict[str, int],
    notes: Sequence[str] = (),
) -> ViolationFinding:
    """friend_group_split finding naming every member's group."""
    member_groups = {m.id: m.assigned_group_id for m in members}
    distinct = set(member_groups.values())

    lines = []
    for member in sorted(members, key=camper_sort_key):
        group_id = member.assigned_group_id
        where = f"Group {number_of[group_id]}" if group_id in number_of else "unplaced"
        lines.append(f"{member.full_name}: {where}")

    return ViolationFinding(
        violation_type=ViolationType.FRIEND_GROUP_SPLIT,
        severity=ViolationSeverity.WARNING,
        affected_friend_group_id=cluster_id,
        affected_camper_ids=[m.id for m in members],
        title=title,
        description=f"{len(members)} friends are spread over {len(distinct)} groups: " + "; ".join(lines),
        suggested_resolution="Move campers to reunite friends, or accept the split",
        details={
            "member_groups": member_groups,
            "member_group_numbers": {m: number_of.get(g) if g else None for m, g in member_groups.items()},
            "placement_notes": list(notes),
        },
    )


@dataclass
class AllocationResult:
    """Entries and groups after allocation, plus the run's bookkeeping."""

    entries: list[CamperSessionEntry]
    groups: list[CampGroup]
    assignments: list[GroupAssignment] = field(default_factory=list)
    findings: list[ViolationFinding] = field(default_factory=list)
    preserved_manual_overrides_count: int = 0
    retained_count: int = 0
    campers_auto_placed: int = 0
    friend_groups_placed_intact: int = 0
    friend_groups_split: int = 0
    split_cluster_ids: set[str] = field(default_factory=set)
    unplaced_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class GroupAllocator:
    """Assigns one camp's campers to its groups."""

    def __init__(
        self,
        max_group_size: int,
        max_grade_spread: int,
        constraint_logger: ConstraintLogger | None = None,
    ):
        self.max_group_size = max_group_size
        self.max_grade_spread = max_grade_spread
        self.constraint_logger = constraint_logger or ConstraintLogger()

    def allocate(
        self,
        camp_id: str,
        entries: Sequence[CamperSessionEntry],
        groups: Sequence[CampGroup],
        analysis: ClusterAnalysis,
        run_type: RunType = RunType.INITIAL,
        grouping_run_id: str | None = None,
    ) -> AllocationResult:
        """Allocate campers to groups.

        Input entries are not modified; the result holds updated copies.
        """
        working = [e.model_copy(deep=True) for e in entries]
        by_id = {e.id: e for e in working}
        previous = {e.id: e.assigned_group_id for e in working}
        states = {g.id: GroupState(g.id, g.group_number) for g in groups}
        number_of = {g.id: g.group_number for g in groups}

        result = AllocationResult(entries=working, groups=list(groups))
        fixed = self._seed_fixed_campers(working, states, run_type, result)
        self._warn_overfull_seeds(states)

        units = self._placement_units(analysis.clusters, by_id, fixed)
        self.constraint_logger.log_progress(
            f"{len(fixed)} campers fixed in place, {len(units)} placement units to pack into {len(states)} groups"
        )

        for cluster, members in units:
            self._place_unit(cluster, members, by_id, fixed, states, result)

        self._record_splits(analysis.clusters, by_id, number_of, result)
        self._record_unplaced(working, result)
        self._record_assignments(camp_id, working, previous, analysis, grouping_run_id, result)

        result.groups = recompute_all_groups(groups, working, self.max_group_size, self.max_grade_spread)
        result.warnings = list(self.constraint_logger.feasibility_warnings)

        logger.info(
            f"Allocated camp {camp_id}: {result.campers_auto_placed} auto-placed, "
            f"{result.preserved_manual_overrides_count} overrides preserved, "
            f"{result.friend_groups_split} clusters split, {len(result.unplaced_ids)} unplaced, "
            f"{len(result.assignments)} assignment changes"
        )
        logger.debug(f"Placement summary for camp {camp_id}: {self.constraint_logger.get_summary()['placements']}")
        return result

    def _seed_fixed_campers(
        self,
        entries: list[CamperSessionEntry],
        states: dict[str, GroupState],
        run_type: RunType,
        result: AllocationResult,
    ) -> set[str]:
        """Pin overrides (and, for incremental runs, all placed campers); clear everyone else."""
        fixed: set[str] = set()

        for entry in sorted(entries, key=camper_sort_key):
            group_id = entry.assigned_group_id
            if group_id is None:
                continue

            if group_id not in states:
                if entry.is_pinned:
                    self.constraint_logger.log_feasibility_warning(
                        f"{entry.full_name} was manually assigned to a group that no longer exists "
                        "and will be placed automatically"
                    )
                entry.assigned_group_id = None
                entry.assignment_type = None
                continue

            if entry.is_pinned:
                fixed.add(entry.id)
                states[group_id].add(entry.id, entry.grade_validated)
                result.preserved_manual_overrides_count += 1
                self.constraint_logger.log_placement("pinned", f"{entry.full_name} kept in group {group_id}")
            elif run_type == RunType.INCREMENTAL:
                fixed.add(entry.id)
                states[group_id].add(entry.id, entry.grade_validated)
                result.retained_count += 1
                self.constraint_logger.log_placement("retained", f"{entry.full_name} kept in group {group_id}")
            else:
                entry.assigned_group_id = None

        return fixed

    def _warn_overfull_seeds(self, states: dict[str, GroupState]) -> None:
        for state in sorted(states.values(), key=lambda s: s.group_number):
            if state.count > self.max_group_size:
                self.constraint_logger.log_feasibility_warning(
                    f"Group {state.group_number} already holds {state.count} pinned campers "
                    f"(max {self.max_group_size})"
                )
            if state.grades and max(state.grades) - min(state.grades) > self.max_grade_spread:
                self.constraint_logger.log_feasibility_warning(
                    f"Pinned campers in group {state.group_number} span "
                    f"{max(state.grades) - min(state.grades)} grades (max {self.max_grade_spread})"
                )

    def _placement_units(
        self,
        clusters: Sequence[FriendCluster],
        by_id: dict[str, CamperSessionEntry],
        fixed: set[str],
    ) -> list[tuple[FriendCluster, list[CamperSessionEntry]]]:
        units = []
        for cluster in clusters:
            members = [by_id[m] for m in cluster.member_ids if m not in fixed]
            if members:
                units.append((cluster, members))

        units.sort(key=lambda u: (-len(u[1]), mean(m.grade_validated for m in u[1]), u[0].id))
        return units

    def _choose_group(
        self,
        states: dict[str, GroupState],
        grades: Sequence[int],
        preferred: set[str],
    ) -> GroupState | None:
        eligible = [s for s in states.values() if s.can_fit(grades, self.max_group_size, self.max_grade_spread)]
        if not eligible:
            return None
        pool = [s for s in eligible if s.group_id in preferred] or eligible
        return min(pool, key=lambda s: (-s.remaining_capacity(self.max_group_size), s.group_number))

    def _place_unit(
        self,
        cluster: FriendCluster,
        members: list[CamperSessionEntry],
        by_id: dict[str, CamperSessionEntry],
        fixed: set[str],
        states: dict[str, GroupState],
        result: AllocationResult,
    ) -> None:
        pinned_friend_groups = {
            by_id[m].assigned_group_id for m in cluster.member_ids if m in fixed and by_id[m].assigned_group_id
        }
        target = self._choose_group(states, [m.grade_validated for m in members], pinned_friend_groups)

        if target is not None:
            if cluster.is_singleton:
                reason = f"placed by grade ({format_grade(members[0].grade_validated)}) and group balance"
            else:
                reason = f"placed with friend cluster of {cluster.member_count}"
            for member in members:
                self._place(member, target, reason, result)
            self.constraint_logger.log_placement(
                "intact", f"cluster {cluster.cluster_number} ({len(members)}) -> group {target.group_number}"
            )
            return

        if len(members) == 1:
            return

        reason = f"split from friend cluster of {cluster.member_count} due to {self._split_cause(cluster, members)}"
        self.constraint_logger.log_placement(
            "split", f"cluster {cluster.cluster_number} ({len(members)}) placed member by member"
        )
        for member in sorted(members, key=camper_sort_key):
            mates = {
                by_id[m].assigned_group_id for m in cluster.member_ids if m != member.id and by_id[m].assigned_group_id
            }
            target = self._choose_group(states, [member.grade_validated], mates)
            if target is not None:
                self._place(member, target, reason, result)

    def _split_cause(self, cluster: FriendCluster, members: list[CamperSessionEntry]) -> str:
        if cluster.exceeds_size_constraint or len(members) > self.max_group_size:
            return "size limit"
        if cluster.exceeds_grade_constraint:
            return "grade spread limit"
        return "no group with enough room"

    def _place(
        self,
        entry: CamperSessionEntry,
        state: GroupState,
        reason: str,
        result: AllocationResult,
    ) -> None:
        state.add(entry.id, entry.grade_validated)
        entry.assigned_group_id = state.group_id
        entry.assignment_type = AssignmentType.AUTO
        entry.assignment_reason = reason
        result.campers_auto_placed += 1

    def _record_splits(
        self,
        clusters: Sequence[FriendCluster],
        by_id: dict[str, CamperSessionEntry],
        number_of: dict[str, int],
        result: AllocationResult,
    ) -> None:
        """One friend_group_split finding per cluster whose members ended up apart."""
        for cluster in clusters:
            members = [by_id[m] for m in cluster.member_ids]
            distinct = {m.assigned_group_id for m in members}

            if len(distinct) == 1:
                if None not in distinct:
                    result.friend_groups_placed_intact += 1
                continue

            result.friend_groups_split += 1
            result.split_cluster_ids.add(cluster.id)
            finding = build_split_finding(
                cluster.id,
                f"Friend group {cluster.cluster_number} was split",
                members,
                number_of,
                notes=cluster.placement_notes,
            )
            result.findings.append(finding)
            self.constraint_logger.log_violation(ViolationType.FRIEND_GROUP_SPLIT.value, finding.description)

    def _record_unplaced(self, entries: list[CamperSessionEntry], result: AllocationResult) -> None:
        for entry in sorted(entries, key=camper_sort_key):
            if entry.assigned_group_id is not None:
                continue

            entry.assignment_type = None
            entry.assignment_reason = UNPLACEABLE_REASON
            result.unplaced_ids.append(entry.id)

            finding = ViolationFinding(
                violation_type=ViolationType.IMPOSSIBLE_PLACEMENT,
                severity=ViolationSeverity.HARD,
                affected_friend_group_id=entry.friend_group_id,
                affected_camper_ids=[entry.id],
                title=f"{entry.full_name} could not be placed",
                description=(
                    f"{entry.full_name} ({format_grade(entry.grade_validated)}) could not be placed: "
                    f"{UNPLACEABLE_REASON}"
                ),
                suggested_resolution="Move the camper into a group manually, or adjust the camp's group limits",
                details={"grade": entry.grade_validated},
            )
            result.findings.append(finding)
            self.constraint_logger.log_violation(
                ViolationType.IMPOSSIBLE_PLACEMENT.value, finding.description, severity="hard"
            )

    def _record_assignments(
        self,
        camp_id: str,
        entries: list[CamperSessionEntry],
        previous: dict[str, str | None],
        analysis: ClusterAnalysis,
        grouping_run_id: str | None,
        result: AllocationResult,
    ) -> None:
        for entry in sorted(entries, key=camper_sort_key):
            if entry.assigned_group_id == previous[entry.id]:
                continue

            assignment = GroupAssignment(
                camp_id=camp_id,
                grouping_run_id=grouping_run_id,
                camper_session_id=entry.id,
                from_group_id=previous[entry.id],
                to_group_id=entry.assigned_group_id,
                assignment_type=AssignmentType.AUTO,
                reason=entry.assignment_reason or UNPLACEABLE_REASON,
                caused_friend_violation=analysis.cluster_of.get(entry.id) in result.split_cluster_ids,
            )
            result.assignments.append(assignment)
