"""
Configuration for the grouping engine.

Usage:
    from grouping.config import ConfigLoader

    ConfigLoader.initialize(pb_client=pb)
    config = ConfigLoader.get_instance()
    max_size = config.get_int("grouping.max_group_size")
"""

from __future__ import annotations

from grouping.errors import (
    ConfigError,
    ConfigUnavailableError,
    InvalidConfigValueError,
    MissingConfigKeyError,
    UnknownConfigKeyError,
)

from .loader import ConfigLoader
from .schema import (
    CONFIG_SCHEMA,
    GRADE_FALLBACK_THRESHOLD,
    LATE_REGISTRATION_DAYS,
    MAX_GRADE_SPREAD,
    MAX_GROUP_SIZE,
    NUM_GROUPS,
    SCHOOL_YEAR_CUTOFF_MONTH,
    get_all_required_keys,
    get_defaults,
)
from .types import ConfigKey

__all__ = [
    "ConfigLoader",
    "ConfigError",
    "MissingConfigKeyError",
    "InvalidConfigValueError",
    "ConfigUnavailableError",
    "UnknownConfigKeyError",
    "CONFIG_SCHEMA",
    "ConfigKey",
    "MAX_GROUP_SIZE",
    "NUM_GROUPS",
    "MAX_GRADE_SPREAD",
    "SCHOOL_YEAR_CUTOFF_MONTH",
    "LATE_REGISTRATION_DAYS",
    "GRADE_FALLBACK_THRESHOLD",
    "get_all_required_keys",
    "get_defaults",
]
