"""Grouping engine error classes.

Input errors and rejected operations. Constraint infeasibility is not an
error: it is recorded as ConstraintViolation records on a successful run.
"""

from __future__ import annotations


class GroupingError(Exception):
    """Base exception for grouping engine errors."""

    pass


class CampNotFoundError(GroupingError):
    """Raised when the camp id does not exist in the store."""

    pass


class NoCampersError(GroupingError):
    """Raised when a camp has zero confirmed registrations."""

    def __init__(self, camp_id: str):
        self.camp_id = camp_id
        super().__init__(f"Camp {camp_id} has no confirmed campers to group")


class InvalidConstraintsError(GroupingError):
    """Raised when group size, group count or grade spread settings are unusable."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid grouping constraints: " + "; ".join(problems))


class MissingDateOfBirthError(GroupingError):
    """Raised when a registration has no parseable date of birth."""

    def __init__(self, registration_id: str, athlete_id: str, raw_value: object = None):
        self.registration_id = registration_id
        self.athlete_id = athlete_id
        self.raw_value = raw_value
        detail = f" (got {raw_value!r})" if raw_value not in (None, "") else ""
        super().__init__(
            f"Registration {registration_id} for athlete {athlete_id} has no parseable date of birth{detail}"
        )


class CamperNotInCampError(GroupingError):
    """Raised when a camper session entry does not exist or belongs to another camp."""

    def __init__(self, camper_id: str, camp_id: str | None = None):
        self.camper_id = camper_id
        self.camp_id = camp_id
        where = f" in camp {camp_id}" if camp_id else ""
        super().__init__(f"Camper {camper_id} not found{where}")


class GroupNotInCampError(GroupingError):
    """Raised when the target group does not exist or belongs to another camp."""

    def __init__(self, group_id: str, camp_id: str):
        self.group_id = group_id
        self.camp_id = camp_id
        super().__init__(f"Group {group_id} does not belong to camp {camp_id}")


class RunInProgressError(GroupingError):
    """Raised when a grouping run for the same camp is already in flight."""

    def __init__(self, camp_id: str):
        self.camp_id = camp_id
        super().__init__(f"A grouping run is already in progress for camp {camp_id}")


class CampLockTimeoutError(GroupingError):
    """Raised when the camp lock cannot be taken within the wait limit."""

    def __init__(self, camp_id: str, waited_seconds: float):
        self.camp_id = camp_id
        self.waited_seconds = waited_seconds
        super().__init__(f"Camp {camp_id} is locked by another operation (waited {waited_seconds:.0f}s)")


class GroupingFinalizedError(GroupingError):
    """Raised when changing groups of a camp whose grouping is finalized."""

    def __init__(self, camp_id: str):
        self.camp_id = camp_id
        super().__init__(f"Grouping for camp {camp_id} is finalized; unfinalize it before making changes")


class FinalizeBlockedError(GroupingError):
    """Raised when finalizing while unplaced campers or hard violations remain."""

    def __init__(self, camp_id: str, unplaced_count: int, hard_violation_count: int):
        self.camp_id = camp_id
        self.unplaced_count = unplaced_count
        self.hard_violation_count = hard_violation_count
        super().__init__(
            f"Cannot finalize camp {camp_id}: {unplaced_count} ungrouped campers "
            f"and {hard_violation_count} unresolved hard violations remaining"
        )


class ViolationNotFoundError(GroupingError):
    """Raised when a violation id does not exist."""

    pass


class ViolationAlreadyResolvedError(GroupingError):
    """Raised when resolving a violation that is already resolved."""

    pass


class ConfigError(GroupingError):
    """Base exception for grouping settings that cannot be read or are invalid."""

    pass


class MissingConfigKeyError(ConfigError):
    """Raised when a required setting has no value and no default."""

    pass


class InvalidConfigValueError(ConfigError):
    """Raised when a setting is not an integer or is out of range."""

    pass


class ConfigUnavailableError(ConfigError):
    """Raised when the PocketBase config collection cannot be reached."""

    pass


class UnknownConfigKeyError(ConfigError):
    """Raised when a key is not a registered grouping setting."""

    pass
