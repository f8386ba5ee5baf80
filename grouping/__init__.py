"""
Grouping - camp grouping engine.

Partitions a camp's confirmed campers into a fixed number of groups under a
hard size limit and a hard grade-spread limit, keeping friend clusters
together where possible, and records every run, move and violation.

This package contains:
- normalizer: roster records to camper session entries (grades, friend requests)
- graph: friend-request graph and friend clusters
- allocator: deterministic cluster-first group allocation
- auditor: constraint violations and their lifecycle
- overrides: manual moves, resolutions, finalization
- engine: GroupingEngine, the entry point
- store: in-memory and PocketBase persistence
"""

from grouping.engine import GroupingEngine
from grouping.errors import (
    CampLockTimeoutError,
    CampNotFoundError,
    CamperNotInCampError,
    FinalizeBlockedError,
    GroupingError,
    GroupingFinalizedError,
    GroupNotInCampError,
    InvalidConstraintsError,
    MissingDateOfBirthError,
    NoCampersError,
    RunInProgressError,
    ViolationAlreadyResolvedError,
    ViolationNotFoundError,
)
from grouping.models import (
    AssignmentType,
    CampGroup,
    CampGroupingState,
    CampRecord,
    CamperSessionEntry,
    ConstraintViolation,
    GroupAssignment,
    GroupingRun,
    GroupingStatus,
    MoveResult,
    ResolutionType,
    RosterRecord,
    RunType,
    ViolationSeverity,
    ViolationType,
)
from grouping.report import GroupReport, build_group_report, format_report
from grouping.store import GroupingStore, InMemoryGroupingStore, PocketBaseGroupingStore

__all__ = [
    "AssignmentType",
    "CampGroup",
    "CampGroupingState",
    "CampLockTimeoutError",
    "CampNotFoundError",
    "CampRecord",
    "CamperNotInCampError",
    "CamperSessionEntry",
    "ConstraintViolation",
    "FinalizeBlockedError",
    "GroupAssignment",
    "GroupNotInCampError",
    "GroupReport",
    "GroupingEngine",
    "GroupingError",
    "GroupingFinalizedError",
    "GroupingRun",
    "GroupingStatus",
    "GroupingStore",
    "InMemoryGroupingStore",
    "InvalidConstraintsError",
    "MissingDateOfBirthError",
    "MoveResult",
    "NoCampersError",
    "PocketBaseGroupingStore",
    "ResolutionType",
    "RosterRecord",
    "RunInProgressError",
    "RunType",
    "ViolationAlreadyResolvedError",
    "ViolationNotFoundError",
    "ViolationSeverity",
    "ViolationType",
    "build_group_report",
    "format_report",
]
