"""Effective grouping constraints for a camp."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from grouping.config import (
    GRADE_FALLBACK_THRESHOLD,
    LATE_REGISTRATION_DAYS,
    MAX_GRADE_SPREAD,
    MAX_GROUP_SIZE,
    NUM_GROUPS,
    SCHOOL_YEAR_CUTOFF_MONTH,
    get_defaults,
)
from grouping.errors import InvalidConstraintsError
from grouping.models import CampRecord

logger = logging.getLogger(__name__)


class IntConfig(Protocol):
    """The part of ConfigLoader the engine needs."""

    def get_int(self, key: str, default: int | None = None) -> int: ...


@dataclass(frozen=True)
class GroupingConstraints:
    max_group_size: int
    num_groups: int
    max_grade_spread: int
    school_year_cutoff_month: int = 9
    late_registration_days: int = 7
    grade_fallback_threshold: int = 3

    @classmethod
    def for_camp(cls, camp: CampRecord, config: IntConfig) -> GroupingConstraints:
        """Camp record values win over configured values.

        Raises:
            InvalidConstraintsError: If the group count, size or spread is unusable
        """
        defaults = get_defaults()

        def configured(key: str) -> int:
            return config.get_int(key, default=defaults[key])

        constraints = cls(
            max_group_size=camp.max_group_size if camp.max_group_size is not None else configured(MAX_GROUP_SIZE),
            num_groups=camp.num_groups if camp.num_groups is not None else configured(NUM_GROUPS),
            max_grade_spread=(
                camp.max_grade_spread if camp.max_grade_spread is not None else configured(MAX_GRADE_SPREAD)
            ),
            school_year_cutoff_month=configured(SCHOOL_YEAR_CUTOFF_MONTH),
            late_registration_days=configured(LATE_REGISTRATION_DAYS),
            grade_fallback_threshold=configured(GRADE_FALLBACK_THRESHOLD),
        )
        constraints.validate()
        return constraints

    def validate(self) -> None:
        problems = []
        if self.num_groups <= 0:
            problems.append(f"num_groups must be at least 1 (got {self.num_groups})")
        if self.max_group_size <= 0:
            problems.append(f"max_group_size must be at least 1 (got {self.max_group_size})")
        if self.max_grade_spread < 0:
            problems.append(f"max_grade_spread cannot be negative (got {self.max_grade_spread})")
        if not 1 <= self.school_year_cutoff_month <= 12:
            problems.append(f"school_year_cutoff_month must be 1-12 (got {self.school_year_cutoff_month})")
        if problems:
            raise InvalidConstraintsError(problems)

    @property
    def total_capacity(self) -> int:
        return self.max_group_size * self.num_groups

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
