"""
Run Recorder.

Builds the GroupingRun record of one allocator invocation and commits it in
the same write set as the run's entries, groups, assignments and
violations. A run that fails before commit is recorded on its own with
success=False; a failure of the commit itself leaves no run row.
"""

from __future__ import annotations

import logging
import time

from grouping.allocator import AllocationResult
from grouping.auditor import ReconciliationResult, summarize_violations
from grouping.constraints import GroupingConstraints
from grouping.graph import ClusterAnalysis
from grouping.models import GroupingRun, GroupingWriteSet, RunType
from grouping.normalizer import NormalizationResult
from grouping.store import GroupingStore

logger = logging.getLogger(__name__)


class RunRecorder:
    """Creates and persists GroupingRun records."""

    def __init__(self, store: GroupingStore):
        self.store = store
        self._started: dict[str, float] = {}

    def start_run(
        self,
        camp_id: str,
        run_type: RunType,
        constraints: GroupingConstraints,
        triggered_by: str | None = None,
        trigger_reason: str = "",
    ) -> GroupingRun:
        run = GroupingRun(
            camp_id=camp_id,
            run_type=run_type,
            triggered_by=triggered_by,
            trigger_reason=trigger_reason,
            max_group_size=constraints.max_group_size,
            num_groups=constraints.num_groups,
            max_grade_spread=constraints.max_grade_spread,
        )
        self._started[run.id] = time.perf_counter()
        logger.info(
            f"Starting {run_type.value} grouping run {run.id} for camp {camp_id} "
            f"(groups={constraints.num_groups}, max size={constraints.max_group_size}, "
            f"max spread={constraints.max_grade_spread})"
        )
        return run

    def _elapsed_ms(self, run: GroupingRun) -> int:
        started = self._started.pop(run.id, None)
        if started is None:
            return 0
        return int((time.perf_counter() - started) * 1000)

    def complete_run(
        self,
        run: GroupingRun,
        normalization: NormalizationResult,
        analysis: ClusterAnalysis,
        allocation: AllocationResult,
        reconciliation: ReconciliationResult,
    ) -> GroupingRun:
        """Fill in the counts of a successful run."""
        active = reconciliation.active
        return run.model_copy(
            update={
                "total_campers": len(normalization.entries),
                "total_friend_groups": len(analysis.clusters),
                "late_registrations": normalization.late_registrations,
                "grade_discrepancies": normalization.grade_discrepancies,
                "execution_time_ms": self._elapsed_ms(run),
                "campers_auto_placed": allocation.campers_auto_placed,
                "friend_groups_placed_intact": allocation.friend_groups_placed_intact,
                "friend_groups_split": allocation.friend_groups_split,
                "constraint_violations": len(active),
                "success": True,
                "warnings": [*normalization.warnings, *allocation.warnings],
                "violation_summary": summarize_violations(active),
                "preserved_manual_overrides_count": allocation.preserved_manual_overrides_count,
                "assignment_ids": [a.id for a in allocation.assignments],
                "violation_ids": [v.id for v in active],
            }
        )

    def commit(self, write_set: GroupingWriteSet) -> GroupingRun:
        """Apply the run's write set atomically. Store errors propagate unchanged."""
        run = write_set.run
        if run is None:
            raise ValueError("Write set has no run to record")

        self.store.apply(write_set)
        logger.info(
            f"Grouping run {run.id} committed: {run.total_campers} campers, "
            f"{run.campers_auto_placed} auto-placed, {run.friend_groups_split} clusters split, "
            f"{run.constraint_violations} open violations, {run.preserved_manual_overrides_count} overrides preserved "
            f"({run.execution_time_ms} ms)"
        )
        return run

    def record_failure(self, run: GroupingRun, error: Exception) -> GroupingRun:
        """Persist a failed run on its own. The caller re-raises the original error."""
        failed = run.model_copy(
            update={
                "success": False,
                "error_message": f"{type(error).__name__}: {error}",
                "execution_time_ms": self._elapsed_ms(run),
            }
        )
        try:
            self.store.apply(GroupingWriteSet(camp_id=run.camp_id, run=failed))
        except Exception:
            logger.exception(f"Could not record failed grouping run {run.id} for camp {run.camp_id}")
        else:
            logger.error(f"Grouping run {run.id} for camp {run.camp_id} failed: {failed.error_message}")
        return failed
