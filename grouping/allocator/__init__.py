"""Greedy cluster-first group allocation."""

from __future__ import annotations

from .allocator import AllocationResult, GroupAllocator, build_split_finding, camper_sort_key
from .constraint_logger import ConstraintLogger
from .group_state import GroupState, reconcile_groups, recompute_all_groups, recompute_group_stats

__all__ = [
    "AllocationResult",
    "ConstraintLogger",
    "GroupAllocator",
    "GroupState",
    "build_split_finding",
    "camper_sort_key",
    "reconcile_groups",
    "recompute_all_groups",
    "recompute_group_stats",
]
