"""
Manual Override Layer.

Human interventions after an automatic run: moving a camper, resolving a
violation, renaming a group, finalizing. Each operation is one read-modify-
write under the camp's lock, committed as one write set. Moves never trigger
a full re-run; only the two touched groups and the camper's friend cluster
are re-evaluated.
"""

from __future__ import annotations

import logging

from grouping.allocator import build_split_finding, recompute_group_stats
from grouping.auditor import ViolationAuditor, resolve_violation
from grouping.config.loader import ConfigLoader
from grouping.constraints import GroupingConstraints, IntConfig
from grouping.errors import (
    CamperNotInCampError,
    FinalizeBlockedError,
    GroupingFinalizedError,
    GroupNotInCampError,
    ViolationNotFoundError,
)
from grouping.models import (
    GROUP_SCOPED_VIOLATIONS,
    AssignmentType,
    CampGroup,
    CampGroupingState,
    CamperSessionEntry,
    ConstraintViolation,
    GroupAssignment,
    GroupingStatus,
    GroupingWriteSet,
    MoveResult,
    ResolutionType,
    ViolationFinding,
    ViolationSeverity,
    ViolationType,
    utc_now,
)
from grouping.store import GroupingStore

logger = logging.getLogger(__name__)


class OverrideManager:
    """Applies human decisions to a camp's grouping state."""

    def __init__(self, store: GroupingStore, config: IntConfig | None = None):
        self.store = store
        self.config = config if config is not None else ConfigLoader.get_instance()

    def _constraints(self, state: CampGroupingState) -> GroupingConstraints:
        return GroupingConstraints.for_camp(state.camp, self.config)

    def move_camper(
        self,
        camper_id: str,
        target_group_id: str,
        reason: str,
        moved_by: str | None = None,
        camp_id: str | None = None,
        assignment_type: AssignmentType = AssignmentType.MANUAL,
    ) -> MoveResult:
        """Move a camper to another group of the same camp.

        Moving a camper into the group they are already in changes nothing.

        Raises:
            CamperNotInCampError: If the camper does not exist (or not in camp_id)
            GroupNotInCampError: If the target group is not one of the camper's camp groups
            GroupingFinalizedError: If the camp's grouping is finalized
        """
        entry = self.store.get_entry(camper_id)
        if entry is None or (camp_id is not None and entry.camp_id != camp_id):
            raise CamperNotInCampError(camper_id, camp_id)

        with self.store.camp_lock(entry.camp_id):
            state = self.store.load_state(entry.camp_id)
            entry = state.entry_by_id.get(camper_id)
            if entry is None:
                raise CamperNotInCampError(camper_id, state.camp.id)

            target = state.group_by_id.get(target_group_id)
            if target is None:
                raise GroupNotInCampError(target_group_id, state.camp.id)
            if state.camp.grouping_status == GroupingStatus.FINALIZED:
                raise GroupingFinalizedError(state.camp.id)

            if entry.assigned_group_id == target.id:
                logger.info(f"{entry.full_name} is already in {target.display_name}, nothing to move")
                return MoveResult(entry=entry)

            return self._apply_move(state, entry, target, reason, moved_by, assignment_type)

    def _apply_move(
        self,
        state: CampGroupingState,
        entry: CamperSessionEntry,
        target: CampGroup,
        reason: str,
        moved_by: str | None,
        assignment_type: AssignmentType,
    ) -> MoveResult:
        constraints = self._constraints(state)
        auditor = ViolationAuditor(constraints.max_group_size, constraints.max_grade_spread)
        from_group_id = entry.assigned_group_id

        moved = entry.model_copy(
            update={
                "assigned_group_id": target.id,
                "assignment_type": assignment_type,
                "assignment_reason": reason,
            }
        )
        entries = [moved if e.id == moved.id else e for e in state.entries]

        touched_ids = {target.id} | ({from_group_id} if from_group_id else set())
        touched = [
            recompute_group_stats(g, entries, constraints.max_group_size, constraints.max_grade_spread)
            for g in state.groups
            if g.id in touched_ids
        ]

        findings = auditor.audit_groups(touched, entries)
        split = self._cluster_split_finding(state, moved, entries)
        if split is not None:
            findings.append(split)

        def in_scope(violation: ConstraintViolation) -> bool:
            if violation.violation_type in GROUP_SCOPED_VIOLATIONS:
                return violation.affected_group_id in touched_ids
            if violation.violation_type == ViolationType.FRIEND_GROUP_SPLIT:
                return moved.friend_group_id is not None and violation.affected_friend_group_id == moved.friend_group_id
            if violation.violation_type == ViolationType.IMPOSSIBLE_PLACEMENT:
                return moved.id in violation.affected_camper_ids
            return False

        reconciliation = auditor.reconcile(
            state.camp.id,
            findings,
            state.violations,
            resolution_type=ResolutionType.MANUAL_OVERRIDE,
            resolved_by=moved_by,
            scope=in_scope,
        )

        raised_types = {(v.violation_type, v.affected_group_id) for v in reconciliation.created}
        assignment = GroupAssignment(
            camp_id=state.camp.id,
            camper_session_id=moved.id,
            from_group_id=from_group_id,
            to_group_id=target.id,
            assignment_type=assignment_type,
            reason=reason,
            caused_size_violation=(ViolationType.SIZE_EXCEEDED, target.id) in raised_types,
            caused_grade_violation=(ViolationType.GRADE_SPREAD_EXCEEDED, target.id) in raised_types,
            caused_friend_violation=any(
                v.violation_type == ViolationType.FRIEND_GROUP_SPLIT for v in reconciliation.created
            ),
            created_by=moved_by,
        )

        self.store.apply(
            GroupingWriteSet(
                camp_id=state.camp.id,
                upsert_entries=[moved],
                upsert_groups=touched,
                new_assignments=[assignment],
                upsert_violations=reconciliation.to_write,
                camp_status=GroupingStatus.REVIEWED,
            )
        )

        from_name = state.group_by_id[from_group_id].display_name if from_group_id in state.group_by_id else "unplaced"
        logger.info(
            f"Moved {moved.full_name} from {from_name} to {target.display_name} "
            f"({len(reconciliation.created)} violations raised, {len(reconciliation.resolved)} resolved)"
        )
        return MoveResult(
            entry=moved,
            assignment=assignment,
            groups=touched,
            raised_violations=reconciliation.created,
            resolved_violations=reconciliation.resolved,
        )

    def _cluster_split_finding(
        self,
        state: CampGroupingState,
        moved: CamperSessionEntry,
        entries: list[CamperSessionEntry],
    ) -> ViolationFinding | None:
        if moved.friend_group_id is None:
            return None
        members = [e for e in entries if e.friend_group_id == moved.friend_group_id]
        if len({m.assigned_group_id for m in members}) <= 1:
            return None

        number_of = {g.id: g.group_number for g in state.groups}
        return build_split_finding(
            moved.friend_group_id,
            f"Friend group of {moved.full_name} was split",
            members,
            number_of,
        )

    def resolve_violation(
        self,
        violation_id: str,
        resolution_type: ResolutionType,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> ConstraintViolation:
        """Resolve a violation by hand (accepted, dismissed, ...).

        Resolving a grade discrepancy also marks the camper's discrepancy resolved.

        Raises:
            ViolationNotFoundError: If the violation does not exist
            ViolationAlreadyResolvedError: If it is already resolved
        """
        violation = self.store.get_violation(violation_id)
        if violation is None:
            raise ViolationNotFoundError(f"Violation {violation_id} not found")

        with self.store.camp_lock(violation.camp_id):
            violation = self.store.get_violation(violation_id)
            if violation is None:
                raise ViolationNotFoundError(f"Violation {violation_id} not found")

            resolved = resolve_violation(violation, resolution_type, resolved_by, note)
            write_set = GroupingWriteSet(camp_id=resolved.camp_id, upsert_violations=[resolved])

            if resolved.violation_type == ViolationType.GRADE_DISCREPANCY:
                for camper_id in resolved.affected_camper_ids:
                    entry = self.store.get_entry(camper_id)
                    if entry is None:
                        continue
                    write_set.upsert_entries.append(
                        entry.model_copy(
                            update={
                                "grade_discrepancy_resolved": True,
                                "grade_discrepancy_resolution": note or resolution_type.value,
                            }
                        )
                    )

            self.store.apply(write_set)

        logger.info(f"Violation {violation_id} ({resolved.violation_type.value}) resolved as {resolution_type.value}")
        return resolved

    def rename_group(self, group_id: str, name: str, camp_id: str | None = None) -> CampGroup:
        """Raises GroupNotInCampError if the group does not exist (or not in camp_id)."""
        group = self.store.get_group(group_id)
        if group is None or (camp_id is not None and group.camp_id != camp_id):
            raise GroupNotInCampError(group_id, camp_id or "unknown")

        with self.store.camp_lock(group.camp_id):
            # Stats may have changed since the lookup above
            group = self.store.get_group(group_id)
            if group is None:
                raise GroupNotInCampError(group_id, camp_id or "unknown")
            renamed = group.model_copy(update={"group_name": name.strip() or None})
            self.store.apply(GroupingWriteSet(camp_id=group.camp_id, upsert_groups=[renamed]))
        logger.info(f"Renamed group {group.group_number} of camp {group.camp_id} to '{renamed.display_name}'")
        return renamed

    def finalize_grouping(self, camp_id: str, finalized_by: str | None = None) -> CampGroupingState:
        """Lock the camp's groups.

        Raises:
            FinalizeBlockedError: While campers are unplaced or hard violations are unresolved
        """
        with self.store.camp_lock(camp_id):
            state = self.store.load_state(camp_id)
            if state.camp.grouping_status == GroupingStatus.FINALIZED:
                logger.info(f"Grouping for camp {camp_id} is already finalized")
                return state

            unplaced = [e for e in state.entries if e.assigned_group_id is None]
            hard = [v for v in state.unresolved_violations if v.severity == ViolationSeverity.HARD]
            if unplaced or hard:
                raise FinalizeBlockedError(camp_id, len(unplaced), len(hard))

            finalized_at = utc_now()
            self.store.apply(
                GroupingWriteSet(
                    camp_id=camp_id,
                    camp_status=GroupingStatus.FINALIZED,
                    camp_finalized_by=finalized_by,
                    camp_finalized_at=finalized_at,
                )
            )

        logger.info(f"Grouping for camp {camp_id} finalized by {finalized_by or 'unknown'}")
        return self.store.load_state(camp_id)

    def unfinalize_grouping(self, camp_id: str, user_id: str | None = None) -> CampGroupingState:
        """Reopen a finalized camp for changes (status returns to reviewed)."""
        with self.store.camp_lock(camp_id):
            state = self.store.load_state(camp_id)
            if state.camp.grouping_status != GroupingStatus.FINALIZED:
                return state
            self.store.apply(GroupingWriteSet(camp_id=camp_id, camp_status=GroupingStatus.REVIEWED))

        logger.info(f"Grouping for camp {camp_id} reopened by {user_id or 'unknown'}")
        return self.store.load_state(camp_id)
