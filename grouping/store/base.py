"""
Repository interface for grouping state.

The engine reads a snapshot at the start of each operation and hands every
change back as one GroupingWriteSet, which a store must apply atomically.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager

from grouping.models import (
    CampGroup,
    CampGroupingState,
    CampRecord,
    CamperSessionEntry,
    ConstraintViolation,
    GroupAssignment,
    GroupingRun,
    GroupingWriteSet,
    RosterRecord,
)


class GroupingStore(ABC):
    """Persistence for one deployment's camps and their grouping state."""

    @abstractmethod
    def load_camp(self, camp_id: str) -> CampRecord:
        """Raises CampNotFoundError if the camp does not exist."""

    @abstractmethod
    def load_roster(self, camp_id: str) -> list[RosterRecord]:
        """Confirmed registrations of the camp joined with athlete records."""

    @abstractmethod
    def load_entries(self, camp_id: str) -> list[CamperSessionEntry]: ...

    @abstractmethod
    def load_groups(self, camp_id: str) -> list[CampGroup]: ...

    @abstractmethod
    def load_violations(self, camp_id: str) -> list[ConstraintViolation]: ...

    @abstractmethod
    def get_entry(self, entry_id: str) -> CamperSessionEntry | None: ...

    @abstractmethod
    def get_group(self, group_id: str) -> CampGroup | None: ...

    @abstractmethod
    def get_violation(self, violation_id: str) -> ConstraintViolation | None: ...

    @abstractmethod
    def list_runs(self, camp_id: str) -> list[GroupingRun]:
        """Runs of a camp, oldest first."""

    @abstractmethod
    def list_assignments(self, camp_id: str, camper_session_id: str | None = None) -> list[GroupAssignment]:
        """Assignment history of a camp (optionally one camper), oldest first."""

    @abstractmethod
    def apply(self, write_set: GroupingWriteSet) -> None:
        """Apply every write of the set, or none of them."""

    @abstractmethod
    def acquire_run_lock(self, camp_id: str) -> None:
        """Claim the camp's in-flight run guard without waiting.

        Raises:
            RunInProgressError: If another run holds the guard
        """

    @abstractmethod
    def release_run_lock(self, camp_id: str) -> None: ...

    @abstractmethod
    @contextmanager
    def camp_lock(self, camp_id: str) -> Iterator[None]:
        """Serialize runs and read-modify-write operations (moves, resolutions) for a camp."""

    def load_state(self, camp_id: str) -> CampGroupingState:
        camp = self.load_camp(camp_id)
        return CampGroupingState(
            camp=camp,
            entries=self.load_entries(camp_id),
            groups=sorted(self.load_groups(camp_id), key=lambda g: g.group_number),
            violations=self.load_violations(camp_id),
        )

    @contextmanager
    def run_guard(self, camp_id: str) -> Iterator[None]:
        """Hold the in-flight run guard for the duration of a run."""
        self.acquire_run_lock(camp_id)
        try:
            yield
        finally:
            self.release_run_lock(camp_id)
