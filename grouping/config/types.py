"""Configuration key definitions for grouping settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ConfigKey:
    """
    Definition of an integer grouping setting.

    Attributes:
        key: Dot-notation key (e.g., "grouping.max_group_size")
        default: Value used when neither env nor database provides one
        required: If True, a missing value with no default is an error
        description: Human-readable description
        min_value: Minimum allowed value
        max_value: Maximum allowed value
    """

    key: str
    default: int | None = None
    required: bool = False
    description: str = ""
    min_value: int | None = None
    max_value: int | None = None

    @property
    def env_var(self) -> str:
        """grouping.max_group_size -> CONFIG_GROUPING_MAX_GROUP_SIZE"""
        return "CONFIG_" + self.key.upper().replace(".", "_")

    def convert(self, value: Any) -> int:
        """Convert a raw env/database value to int."""
        if isinstance(value, bool):
            raise TypeError(f"expected int, got bool {value!r}")
        if isinstance(value, float) and not value.is_integer():
            raise TypeError(f"expected int, got {value!r}")
        return int(value)

    def validate(self, value: int) -> str | None:
        """
        Range-check a converted value.

        Returns:
            None if valid, error message string if invalid
        """
        if self.min_value is not None and value < self.min_value:
            return f"Value {value} below minimum {self.min_value}"
        if self.max_value is not None and value > self.max_value:
            return f"Value {value} above maximum {self.max_value}"
        return None
