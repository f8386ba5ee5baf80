"""
Constraint Logger - bookkeeping for allocator decisions.

Tracks placements, feasibility warnings and violations found while packing
one camp. Feasibility warnings are copied onto the GroupingRun.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from grouping.logging_config import TRACE

logger = logging.getLogger(__name__)


class ConstraintLogger:
    """Logger for tracking placement decisions and violations during allocation."""

    def __init__(self, debug_mode: bool = False) -> None:
        self.debug_mode = debug_mode
        self.placements: dict[str, list[str]] = defaultdict(list)
        self.violations: dict[str, list[dict[str, str]]] = defaultdict(list)
        self.feasibility_warnings: list[str] = []
        self.progress: list[str] = []

    def log_placement(self, kind: str, details: str) -> None:
        """Record one placement ("intact", "split", "pinned", "retained", "unplaced")."""
        self.placements[kind].append(details)
        if self.debug_mode:
            logger.debug(f"[PLACEMENT] {kind}: {details}")
        else:
            logger.log(TRACE, f"[PLACEMENT] {kind}: {details}")

    def log_feasibility_warning(self, warning: str) -> None:
        self.feasibility_warnings.append(warning)
        logger.warning(f"[FEASIBILITY] {warning}")

    def log_violation(self, violation_type: str, details: str, severity: str = "warning") -> None:
        self.violations[violation_type].append({"details": details, "severity": severity})
        if severity == "hard":
            logger.error(f"[VIOLATION] {violation_type}: {details}")
        else:
            logger.info(f"[VIOLATION] {violation_type}: {details}")

    def log_progress(self, message: str) -> None:
        self.progress.append(message)
        if self.debug_mode:
            logger.debug(f"[ALLOCATOR] {message}")

    def placement_counts(self) -> dict[str, int]:
        return {kind: len(items) for kind, items in self.placements.items()}

    def get_summary(self) -> dict[str, Any]:
        return {
            "placements": self.placement_counts(),
            "violations": {k: len(v) for k, v in self.violations.items()},
            "feasibility_warnings": list(self.feasibility_warnings),
            "progress": list(self.progress),
        }
