"""
GroupingEngine - entry point for the admin application.

Pipeline of one run:
    Normalizer -> Friend Cluster Builder -> Group Allocator
    -> Violation Auditor -> Run Recorder

Usage:
    engine = GroupingEngine(store)
    run = engine.run_grouping(camp_id, RunType.INITIAL, triggered_by=user_id)
    result = engine.move_camper(camper_id, group_id, reason="Sibling request")
"""

from __future__ import annotations

import logging

from grouping.allocator import ConstraintLogger, GroupAllocator, reconcile_groups
from grouping.auditor import ViolationAuditor
from grouping.config.loader import ConfigLoader
from grouping.constraints import GroupingConstraints, IntConfig
from grouping.errors import GroupingFinalizedError, NoCampersError
from grouping.graph import FriendClusterBuilder
from grouping.models import (
    AssignmentType,
    CampGroup,
    CampGroupingState,
    ConstraintViolation,
    GroupAssignment,
    GroupingRun,
    GroupingStatus,
    GroupingWriteSet,
    MoveResult,
    ResolutionType,
    RunType,
)
from grouping.normalizer import CamperSessionNormalizer
from grouping.overrides import OverrideManager
from grouping.recorder import RunRecorder
from grouping.report import GroupReport, build_group_report
from grouping.store import GroupingStore

logger = logging.getLogger(__name__)

REMOVED_FROM_ROSTER_REASON = "removed from roster: registration no longer confirmed"


class GroupingEngine:
    """Runs and adjusts the grouping of camps held in one store."""

    def __init__(
        self,
        store: GroupingStore,
        config: IntConfig | None = None,
        debug: bool = False,
    ):
        self.store = store
        self.config = config if config is not None else ConfigLoader.get_instance()
        self.debug = debug
        self.recorder = RunRecorder(store)
        self.overrides = OverrideManager(store, self.config)

    def run_grouping(
        self,
        camp_id: str,
        run_type: RunType = RunType.INITIAL,
        triggered_by: str | None = None,
        trigger_reason: str = "",
    ) -> GroupingRun:
        """Group a camp's confirmed campers.

        Raises:
            RunInProgressError: If a run for this camp is already in flight
            CampLockTimeoutError: If an override holds the camp lock for too long
            CampNotFoundError: If the camp does not exist
            GroupingFinalizedError: If the camp's grouping is finalized
            InvalidConstraintsError: If the camp's limits are unusable (nothing is written)
            NoCampersError: If the camp has no confirmed campers (nothing is written)
            MissingDateOfBirthError: After recording a failed run
        """
        # Moves and other overrides wait until the run has committed
        with self.store.run_guard(camp_id), self.store.camp_lock(camp_id):
            state = self.store.load_state(camp_id)
            if state.camp.grouping_status == GroupingStatus.FINALIZED:
                raise GroupingFinalizedError(camp_id)

            constraints = GroupingConstraints.for_camp(state.camp, self.config)
            roster = self.store.load_roster(camp_id)
            if not roster:
                raise NoCampersError(camp_id)

            run = self.recorder.start_run(camp_id, run_type, constraints, triggered_by, trigger_reason)
            try:
                write_set = self._build_run(state, roster, constraints, run)
            except Exception as e:
                self.recorder.record_failure(run, e)
                raise

            return self.recorder.commit(write_set)

    def _build_run(
        self,
        state: CampGroupingState,
        roster: list,
        constraints: GroupingConstraints,
        run: GroupingRun,
    ) -> GroupingWriteSet:
        camp_id = state.camp.id
        normalizer = CamperSessionNormalizer(
            school_year_cutoff_month=constraints.school_year_cutoff_month,
            late_registration_days=constraints.late_registration_days,
            grade_fallback_threshold=constraints.grade_fallback_threshold,
        )
        normalization = normalizer.normalize(state.camp, roster, state.entries)

        groups, removed_groups = reconcile_groups(camp_id, state.groups, constraints.num_groups)
        if removed_groups:
            logger.info(f"Removing {len(removed_groups)} groups above group number {constraints.num_groups}")

        builder = FriendClusterBuilder(constraints.max_group_size, constraints.max_grade_spread)
        analysis = builder.build(camp_id, normalization.entries)

        allocator = GroupAllocator(
            constraints.max_group_size,
            constraints.max_grade_spread,
            ConstraintLogger(debug_mode=self.debug),
        )
        allocation = allocator.allocate(
            camp_id,
            normalization.entries,
            groups,
            analysis,
            run_type=run.run_type,
            grouping_run_id=run.id,
        )

        auditor = ViolationAuditor(constraints.max_group_size, constraints.max_grade_spread)
        findings = auditor.audit(allocation.groups, allocation.entries, [*analysis.findings, *allocation.findings])
        reconciliation = auditor.reconcile(camp_id, findings, state.violations, grouping_run_id=run.id)

        removal_assignments = [
            GroupAssignment(
                camp_id=camp_id,
                grouping_run_id=run.id,
                camper_session_id=entry.id,
                from_group_id=entry.assigned_group_id,
                to_group_id=None,
                assignment_type=AssignmentType.AUTO,
                reason=REMOVED_FROM_ROSTER_REASON,
            )
            for entry in normalization.removed_entries
            if entry.assigned_group_id is not None
        ]
        allocation.assignments.extend(removal_assignments)

        completed = self.recorder.complete_run(run, normalization, analysis, allocation, reconciliation)
        return GroupingWriteSet(
            camp_id=camp_id,
            upsert_entries=allocation.entries,
            delete_entry_ids=[e.id for e in normalization.removed_entries],
            upsert_groups=allocation.groups,
            delete_group_ids=[g.id for g in removed_groups],
            new_assignments=allocation.assignments,
            upsert_violations=reconciliation.to_write,
            run=completed,
            camp_status=GroupingStatus.AUTO_GROUPED,
        )

    # Manual override layer

    def move_camper(
        self,
        camper_id: str,
        target_group_id: str,
        reason: str,
        moved_by: str | None = None,
        camp_id: str | None = None,
    ) -> MoveResult:
        return self.overrides.move_camper(camper_id, target_group_id, reason, moved_by=moved_by, camp_id=camp_id)

    def resolve_violation(
        self,
        violation_id: str,
        resolution_type: ResolutionType,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> ConstraintViolation:
        return self.overrides.resolve_violation(violation_id, resolution_type, resolved_by, note)

    def rename_group(self, group_id: str, name: str, camp_id: str | None = None) -> CampGroup:
        return self.overrides.rename_group(group_id, name, camp_id)

    def finalize_grouping(self, camp_id: str, finalized_by: str | None = None) -> CampGroupingState:
        return self.overrides.finalize_grouping(camp_id, finalized_by)

    def unfinalize_grouping(self, camp_id: str, user_id: str | None = None) -> CampGroupingState:
        return self.overrides.unfinalize_grouping(camp_id, user_id)

    # Read side

    def get_state(self, camp_id: str) -> CampGroupingState:
        return self.store.load_state(camp_id)

    def list_runs(self, camp_id: str) -> list[GroupingRun]:
        return self.store.list_runs(camp_id)

    def camper_history(self, camp_id: str, camper_id: str) -> list[GroupAssignment]:
        return self.store.list_assignments(camp_id, camper_session_id=camper_id)

    def build_group_report(self, camp_id: str) -> GroupReport:
        return build_group_report(self.store.load_state(camp_id))
