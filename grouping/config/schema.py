"""Configuration schema registry.

Every grouping setting the engine reads is registered here. Unknown keys are
rejected. Values set on a camp record take precedence over these.
"""

from __future__ import annotations

from typing import Any

from .types import ConfigKey

MAX_GROUP_SIZE = "grouping.max_group_size"
NUM_GROUPS = "grouping.num_groups"
MAX_GRADE_SPREAD = "grouping.max_grade_spread"
SCHOOL_YEAR_CUTOFF_MONTH = "grouping.school_year_cutoff_month"
LATE_REGISTRATION_DAYS = "grouping.late_registration_days"
GRADE_FALLBACK_THRESHOLD = "grouping.grade_fallback_threshold"

CONFIG_SCHEMA: dict[str, ConfigKey] = {
    # =========================================================================
    # HARD CONSTRAINTS (per-camp values on the camp record win)
    # =========================================================================
    MAX_GROUP_SIZE: ConfigKey(
        key=MAX_GROUP_SIZE,
        default=12,
        description="Maximum campers in one group",
        min_value=1,
        max_value=200,
    ),
    NUM_GROUPS: ConfigKey(
        key=NUM_GROUPS,
        default=5,
        description="Number of activity groups per camp",
        min_value=1,
        max_value=50,
    ),
    MAX_GRADE_SPREAD: ConfigKey(
        key=MAX_GRADE_SPREAD,
        default=2,
        description="Maximum difference between highest and lowest grade in a group",
        min_value=0,
        max_value=13,
    ),
    # =========================================================================
    # NORMALIZER
    # =========================================================================
    SCHOOL_YEAR_CUTOFF_MONTH: ConfigKey(
        key=SCHOOL_YEAR_CUTOFF_MONTH,
        default=9,
        description="Month on whose 1st day the school year starts",
        min_value=1,
        max_value=12,
    ),
    LATE_REGISTRATION_DAYS: ConfigKey(
        key=LATE_REGISTRATION_DAYS,
        default=7,
        description="Registrations fewer than this many days before camp start are late",
        min_value=0,
        max_value=365,
    ),
    GRADE_FALLBACK_THRESHOLD: ConfigKey(
        key=GRADE_FALLBACK_THRESHOLD,
        default=3,
        description="Registration grade is replaced by the DOB grade when they differ by more than this",
        min_value=0,
        max_value=13,
    ),
}


def get_all_required_keys() -> list[str]:
    """Keys that must resolve to a value at startup (no default)."""
    return [key for key, schema in CONFIG_SCHEMA.items() if schema.required and schema.default is None]


def get_defaults() -> dict[str, Any]:
    return {key: schema.default for key, schema in CONFIG_SCHEMA.items()}
