"""
Group membership state and the explicit group stats recomputation.

Group stats are never updated incrementally in storage: every operation that
changes membership calls recompute_group_stats for each group it touched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from grouping.models import GROUP_COLORS, GROUP_NAMES, CampGroup, CamperSessionEntry

logger = logging.getLogger(__name__)


def recompute_group_stats(
    group: CampGroup,
    entries: Iterable[CamperSessionEntry],
    max_group_size: int,
    max_grade_spread: int,
) -> CampGroup:
    """Return a copy of the group with stats derived from its live members.

    Members are the entries whose assigned_group_id is this group's id.
    """
    grades = [e.grade_validated for e in entries if e.assigned_group_id == group.id]
    count = len(grades)
    min_grade = min(grades) if grades else None
    max_grade = max(grades) if grades else None
    spread = (max_grade - min_grade) if grades else 0  # type: ignore[operator]

    return group.model_copy(
        update={
            "camper_count": count,
            "min_grade": min_grade,
            "max_grade": max_grade,
            "grade_spread": spread,
            "size_violation": count > max_group_size,
            "grade_violation": spread > max_grade_spread,
        }
    )


def recompute_all_groups(
    groups: Sequence[CampGroup],
    entries: Sequence[CamperSessionEntry],
    max_group_size: int,
    max_grade_spread: int,
) -> list[CampGroup]:
    return [recompute_group_stats(g, entries, max_group_size, max_grade_spread) for g in groups]


def default_group_name(group_number: int) -> str:
    if group_number <= len(GROUP_NAMES):
        return GROUP_NAMES[group_number - 1]
    return f"Group {group_number}"


def default_group_color(group_number: int) -> str:
    return GROUP_COLORS[(group_number - 1) % len(GROUP_COLORS)]


def reconcile_groups(
    camp_id: str,
    existing: Sequence[CampGroup],
    num_groups: int,
) -> tuple[list[CampGroup], list[CampGroup]]:
    """Make sure the camp has groups numbered 1..num_groups.

    Returns (groups, removed): existing groups are reused by number, missing
    numbers are created with default name/color, and groups numbered above
    num_groups are returned as removed.
    """
    by_number: dict[int, CampGroup] = {}
    removed: list[CampGroup] = []
    for group in sorted(existing, key=lambda g: g.group_number):
        if group.group_number > num_groups or group.group_number in by_number:
            removed.append(group)
        else:
            by_number[group.group_number] = group

    groups = []
    for number in range(1, num_groups + 1):
        group = by_number.get(number)
        if group is None:
            group = CampGroup(
                camp_id=camp_id,
                group_number=number,
                group_name=default_group_name(number),
                group_color=default_group_color(number),
            )
            logger.debug(f"Creating group {number} ({group.group_name}) for camp {camp_id}")
        groups.append(group)

    return groups, removed


@dataclass
class GroupState:
    """Running membership of one group while the allocator packs campers."""

    group_id: str
    group_number: int
    member_ids: list[str] = field(default_factory=list)
    grades: list[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.member_ids)

    def remaining_capacity(self, max_group_size: int) -> int:
        return max_group_size - self.count

    def can_fit(self, grades: Sequence[int], max_group_size: int, max_grade_spread: int) -> bool:
        """Would adding campers with these grades keep both hard constraints?"""
        if self.count + len(grades) > max_group_size:
            return False
        combined = [*self.grades, *grades]
        if not combined:
            return True
        return max(combined) - min(combined) <= max_grade_spread

    def add(self, entry_id: str, grade: int) -> None:
        self.member_ids.append(entry_id)
        self.grades.append(grade)
