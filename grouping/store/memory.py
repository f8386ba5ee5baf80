"""In-memory GroupingStore for tests, scripts and embedding."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from grouping.errors import CampNotFoundError, RunInProgressError
from grouping.logging_config import TRACE
from grouping.models import (
    CampGroup,
    CampRecord,
    CamperSessionEntry,
    ConstraintViolation,
    GroupAssignment,
    GroupingRun,
    GroupingWriteSet,
    RosterRecord,
)
from grouping.store.base import GroupingStore

logger = logging.getLogger(__name__)


class InMemoryGroupingStore(GroupingStore):
    """Dict-backed store. All reads return copies; apply() swaps state under one lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._camps: dict[str, CampRecord] = {}
        self._rosters: dict[str, list[RosterRecord]] = defaultdict(list)
        self._entries: dict[str, CamperSessionEntry] = {}
        self._groups: dict[str, CampGroup] = {}
        self._assignments: list[GroupAssignment] = []
        self._violations: dict[str, ConstraintViolation] = {}
        self._runs: list[GroupingRun] = []
        self._running: set[str] = set()
        self._camp_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    # Roster setup (the registration system owns these in production)

    def add_camp(self, camp: CampRecord) -> CampRecord:
        with self._lock:
            self._camps[camp.id] = camp.model_copy(deep=True)
        return camp

    def set_roster(self, camp_id: str, records: Iterable[RosterRecord]) -> None:
        with self._lock:
            self._rosters[camp_id] = [r.model_copy(deep=True) for r in records]

    def add_registration(self, camp_id: str, record: RosterRecord) -> None:
        with self._lock:
            self._rosters[camp_id].append(record.model_copy(deep=True))

    def cancel_registration(self, camp_id: str, athlete_id: str) -> None:
        with self._lock:
            self._rosters[camp_id] = [r for r in self._rosters[camp_id] if r.athlete_id != athlete_id]

    # GroupingStore

    def load_camp(self, camp_id: str) -> CampRecord:
        with self._lock:
            camp = self._camps.get(camp_id)
            if camp is None:
                raise CampNotFoundError(f"Camp {camp_id} not found")
            return camp.model_copy(deep=True)

    def load_roster(self, camp_id: str) -> list[RosterRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rosters.get(camp_id, [])]

    def load_entries(self, camp_id: str) -> list[CamperSessionEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._entries.values() if e.camp_id == camp_id]

    def load_groups(self, camp_id: str) -> list[CampGroup]:
        with self._lock:
            return [g.model_copy(deep=True) for g in self._groups.values() if g.camp_id == camp_id]

    def load_violations(self, camp_id: str) -> list[ConstraintViolation]:
        with self._lock:
            return [v.model_copy(deep=True) for v in self._violations.values() if v.camp_id == camp_id]

    def get_entry(self, entry_id: str) -> CamperSessionEntry | None:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy(deep=True) if entry else None

    def get_group(self, group_id: str) -> CampGroup | None:
        with self._lock:
            group = self._groups.get(group_id)
            return group.model_copy(deep=True) if group else None

    def get_violation(self, violation_id: str) -> ConstraintViolation | None:
        with self._lock:
            violation = self._violations.get(violation_id)
            return violation.model_copy(deep=True) if violation else None

    def list_runs(self, camp_id: str) -> list[GroupingRun]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._runs if r.camp_id == camp_id]

    def list_assignments(self, camp_id: str, camper_session_id: str | None = None) -> list[GroupAssignment]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._assignments
                if a.camp_id == camp_id and (camper_session_id is None or a.camper_session_id == camper_session_id)
            ]

    def apply(self, write_set: GroupingWriteSet) -> None:
        if write_set.is_empty:
            return

        with self._lock:
            if write_set.camp_id not in self._camps:
                raise CampNotFoundError(f"Camp {write_set.camp_id} not found")

            entries = dict(self._entries)
            groups = dict(self._groups)
            violations = dict(self._violations)

            for entry_id in write_set.delete_entry_ids:
                entries.pop(entry_id, None)
            for entry in write_set.upsert_entries:
                entries[entry.id] = entry.model_copy(deep=True)
            for group_id in write_set.delete_group_ids:
                groups.pop(group_id, None)
            for group in write_set.upsert_groups:
                groups[group.id] = group.model_copy(deep=True)
            for violation in write_set.upsert_violations:
                violations[violation.id] = violation.model_copy(deep=True)

            camp = self._camps[write_set.camp_id]
            if write_set.camp_status is not None:
                camp = camp.model_copy(
                    update={
                        "grouping_status": write_set.camp_status,
                        "grouping_finalized_at": write_set.camp_finalized_at,
                        "grouping_finalized_by": write_set.camp_finalized_by,
                    }
                )

            self._entries = entries
            self._groups = groups
            self._violations = violations
            self._assignments.extend(a.model_copy(deep=True) for a in write_set.new_assignments)
            if write_set.run is not None:
                self._runs.append(write_set.run.model_copy(deep=True))
            self._camps[write_set.camp_id] = camp

        logger.log(
            TRACE,
            f"Applied write set for camp {write_set.camp_id}: {len(write_set.upsert_entries)} entries, "
            f"{len(write_set.upsert_groups)} groups, {len(write_set.new_assignments)} assignments, "
            f"{len(write_set.upsert_violations)} violations",
        )

    def acquire_run_lock(self, camp_id: str) -> None:
        with self._lock:
            if camp_id in self._running:
                raise RunInProgressError(camp_id)
            self._running.add(camp_id)

    def release_run_lock(self, camp_id: str) -> None:
        with self._lock:
            self._running.discard(camp_id)

    @contextmanager
    def camp_lock(self, camp_id: str) -> Iterator[None]:
        with self._lock:
            camp_lock = self._camp_locks[camp_id]
        with camp_lock:
            yield
