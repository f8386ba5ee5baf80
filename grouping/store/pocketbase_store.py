"""
PocketBase-backed GroupingStore.

Collections:
    camps, registrations (expand athlete)      read-only roster inputs
    camper_session_data, camp_groups,
    group_assignments, constraint_violations,
    grouping_runs                              grouping state
    grouping_run_locks                         in-flight run guard (unique camp_id)
    grouping_camp_locks                        camp lock for runs and overrides (unique camp_id)

Write sets go through the PocketBase batch API so that one run or move is
committed in a single transaction.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from pocketbase import PocketBase
from pocketbase.client import ClientResponseError  # type: ignore[attr-defined]

from grouping.errors import CampLockTimeoutError, CampNotFoundError, RunInProgressError
from grouping.logging_config import TRACE
from grouping.models import (
    CampGroup,
    CampRecord,
    CamperSessionEntry,
    ConstraintViolation,
    GroupAssignment,
    GroupingRun,
    GroupingWriteSet,
    RosterRecord,
    utc_now,
)
from grouping.settings import get_settings
from grouping.store.base import GroupingStore

logger = logging.getLogger(__name__)

CAMPS = "camps"
REGISTRATIONS = "registrations"
ENTRIES = "camper_session_data"
GROUPS = "camp_groups"
ASSIGNMENTS = "group_assignments"
VIOLATIONS = "constraint_violations"
RUNS = "grouping_runs"
RUN_LOCKS = "grouping_run_locks"
CAMP_LOCKS = "grouping_camp_locks"

CONFIRMED_STATUS = "confirmed"
DEFAULT_STALE_LOCK_SECONDS = 600
DEFAULT_CAMP_LOCK_WAIT_SECONDS = 30.0
LOCK_POLL_SECONDS = 0.25

# PocketBase record metadata that is not part of any model
_RECORD_META = {"collection_id", "collection_name", "expand", "created", "updated"}

M = TypeVar("M", bound=BaseModel)


def _to_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_date(value: Any) -> date | None:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = _to_datetime(value)
    return parsed.date() if parsed else None


def record_data(record: Any) -> dict[str, Any]:
    """Plain field dict of a PocketBase record; empty values are dropped so model defaults apply."""
    data = {"id": record.id}
    for key, value in vars(record).items():
        if key in _RECORD_META or key.startswith("_") or value is None or value == "":
            continue
        data[key] = value
    return data


def _expanded(record: Any, field: str) -> Any | None:
    expand = getattr(record, "expand", None) or {}
    return expand.get(field)


class PocketBaseGroupingStore(GroupingStore):
    """GroupingStore on a PocketBase instance."""

    def __init__(
        self,
        pb: PocketBase,
        stale_lock_seconds: int = DEFAULT_STALE_LOCK_SECONDS,
        camp_lock_wait_seconds: float = DEFAULT_CAMP_LOCK_WAIT_SECONDS,
    ):
        self.pb = pb
        self.stale_lock_seconds = stale_lock_seconds
        self.camp_lock_wait_seconds = camp_lock_wait_seconds
        self._run_lock_ids: dict[str, str] = {}
        self._camp_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._camp_locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls) -> PocketBaseGroupingStore:
        """Connect and authenticate as superuser using process settings."""
        settings = get_settings()
        pb = PocketBase(settings.pocketbase_url)
        pb.collection("_superusers").auth_with_password(
            settings.pocketbase_admin_email, settings.pocketbase_admin_password
        )
        logger.info(f"Connected to PocketBase at {settings.pocketbase_url}")
        return cls(pb)

    # Reads

    def _full_list(self, collection: str, filter_str: str, sort: str | None = None, **extra: str) -> list[Any]:
        query_params: dict[str, Any] = {"filter": filter_str, **extra}
        if sort:
            query_params["sort"] = sort
        logger.log(TRACE, f"Querying {collection} with {query_params}")
        return self.pb.collection(collection).get_full_list(query_params=query_params)

    def _get_one(self, collection: str, record_id: str) -> Any | None:
        try:
            return self.pb.collection(collection).get_one(record_id)
        except ClientResponseError as e:
            if e.status == 404:
                return None
            raise

    def _to_model(
        self,
        model: type[M],
        record: Any,
        date_fields: tuple[str, ...] = (),
        datetime_fields: tuple[str, ...] = (),
    ) -> M:
        data = record_data(record)
        for name in date_fields:
            if name in data:
                data[name] = _to_date(data[name])
        for name in datetime_fields:
            if name in data:
                data[name] = _to_datetime(data[name])
        return model.model_validate(data)

    def _entry(self, record: Any) -> CamperSessionEntry:
        return self._to_model(CamperSessionEntry, record, ("date_of_birth",), ("registered_at",))

    def _group(self, record: Any) -> CampGroup:
        return self._to_model(CampGroup, record)

    def _violation(self, record: Any) -> ConstraintViolation:
        return self._to_model(ConstraintViolation, record, datetime_fields=("resolved_at", "created_at"))

    def load_camp(self, camp_id: str) -> CampRecord:
        record = self._get_one(CAMPS, camp_id)
        if record is None:
            raise CampNotFoundError(f"Camp {camp_id} not found")
        return self._to_model(CampRecord, record, ("start_date", "end_date"), ("grouping_finalized_at",))

    def load_roster(self, camp_id: str) -> list[RosterRecord]:
        registrations = self._full_list(
            REGISTRATIONS,
            f'camp_id = "{camp_id}" && status = "{CONFIRMED_STATUS}"',
            sort="created",
            expand="athlete_id",
        )

        roster = []
        for registration in registrations:
            athlete = _expanded(registration, "athlete_id")
            if athlete is None:
                logger.warning(f"Registration {registration.id} has no athlete record, skipping")
                continue
            roster.append(
                RosterRecord(
                    registration_id=registration.id,
                    athlete_id=athlete.id,
                    first_name=athlete.first_name,
                    last_name=athlete.last_name,
                    date_of_birth=getattr(athlete, "date_of_birth", None) or None,
                    grade_from_registration=getattr(athlete, "grade", None) or None,
                    friend_request_athlete_ids=getattr(registration, "friend_request_athlete_ids", None) or [],
                    friend_request_names=getattr(registration, "friend_requests", None) or [],
                    registered_at=_to_datetime(registration.created) or utc_now(),
                    medical_notes=getattr(athlete, "medical_notes", None) or None,
                    allergies=getattr(athlete, "allergies", None) or None,
                    special_considerations=getattr(registration, "special_considerations", None) or None,
                )
            )
        logger.debug(f"Loaded {len(roster)} confirmed registrations for camp {camp_id}")
        return roster

    def load_entries(self, camp_id: str) -> list[CamperSessionEntry]:
        return [self._entry(r) for r in self._full_list(ENTRIES, f'camp_id = "{camp_id}"')]

    def load_groups(self, camp_id: str) -> list[CampGroup]:
        return [self._group(r) for r in self._full_list(GROUPS, f'camp_id = "{camp_id}"', sort="group_number")]

    def load_violations(self, camp_id: str) -> list[ConstraintViolation]:
        return [self._violation(r) for r in self._full_list(VIOLATIONS, f'camp_id = "{camp_id}"', sort="created")]

    def get_entry(self, entry_id: str) -> CamperSessionEntry | None:
        record = self._get_one(ENTRIES, entry_id)
        return self._entry(record) if record else None

    def get_group(self, group_id: str) -> CampGroup | None:
        record = self._get_one(GROUPS, group_id)
        return self._group(record) if record else None

    def get_violation(self, violation_id: str) -> ConstraintViolation | None:
        record = self._get_one(VIOLATIONS, violation_id)
        return self._violation(record) if record else None

    def list_runs(self, camp_id: str) -> list[GroupingRun]:
        records = self._full_list(RUNS, f'camp_id = "{camp_id}"', sort="created")
        return [self._to_model(GroupingRun, r, datetime_fields=("created_at",)) for r in records]

    def list_assignments(self, camp_id: str, camper_session_id: str | None = None) -> list[GroupAssignment]:
        filter_str = f'camp_id = "{camp_id}"'
        if camper_session_id:
            filter_str += f' && camper_session_id = "{camper_session_id}"'
        records = self._full_list(ASSIGNMENTS, filter_str, sort="created")
        return [self._to_model(GroupAssignment, r, datetime_fields=("created_at",)) for r in records]

    # Writes

    def build_batch_requests(self, write_set: GroupingWriteSet) -> list[dict[str, Any]]:
        """Translate a write set into PocketBase batch API requests."""
        requests: list[dict[str, Any]] = []

        def upsert(collection: str, model: BaseModel) -> None:
            requests.append(
                {
                    "method": "PUT",
                    "url": f"/api/collections/{collection}/records",
                    "body": model.model_dump(mode="json"),
                }
            )

        def create(collection: str, model: BaseModel) -> None:
            requests.append(
                {
                    "method": "POST",
                    "url": f"/api/collections/{collection}/records",
                    "body": model.model_dump(mode="json"),
                }
            )

        def delete(collection: str, record_id: str) -> None:
            requests.append({"method": "DELETE", "url": f"/api/collections/{collection}/records/{record_id}"})

        # Entries reference groups, so groups are written first and deleted last
        for group in write_set.upsert_groups:
            upsert(GROUPS, group)
        for entry_id in write_set.delete_entry_ids:
            delete(ENTRIES, entry_id)
        for entry in write_set.upsert_entries:
            upsert(ENTRIES, entry)
        for group_id in write_set.delete_group_ids:
            delete(GROUPS, group_id)
        if write_set.run is not None:
            create(RUNS, write_set.run)
        for assignment in write_set.new_assignments:
            create(ASSIGNMENTS, assignment)
        for violation in write_set.upsert_violations:
            upsert(VIOLATIONS, violation)

        if write_set.camp_status is not None:
            requests.append(
                {
                    "method": "PATCH",
                    "url": f"/api/collections/{CAMPS}/records/{write_set.camp_id}",
                    "body": {
                        "grouping_status": write_set.camp_status.value,
                        "grouping_finalized_at": (
                            write_set.camp_finalized_at.isoformat() if write_set.camp_finalized_at else ""
                        ),
                        "grouping_finalized_by": write_set.camp_finalized_by or "",
                    },
                }
            )
        return requests

    def apply(self, write_set: GroupingWriteSet) -> None:
        if write_set.is_empty:
            return

        requests = self.build_batch_requests(write_set)
        logger.log(TRACE, f"Submitting batch of {len(requests)} requests for camp {write_set.camp_id}")
        self.pb.send("/api/batch", {"method": "POST", "body": {"requests": requests}})
        logger.debug(f"Committed {len(requests)} writes for camp {write_set.camp_id}")

    # Locks

    def _claim_lock(self, collection: str, camp_id: str) -> str | None:
        """Create the camp's lock record; None while another holder's record is fresh."""
        locks = self.pb.collection(collection)
        try:
            return locks.create({"camp_id": camp_id, "acquired_at": utc_now().isoformat()}).id
        except ClientResponseError as e:
            if e.status != 400:
                raise

        # Unique index on camp_id rejected the insert
        try:
            existing = locks.get_first_list_item(f'camp_id = "{camp_id}"')
        except ClientResponseError as e:
            if e.status != 404:
                raise
            existing = None

        if existing is not None:
            acquired_at = _to_datetime(getattr(existing, "acquired_at", None))
            if not acquired_at or (utc_now() - acquired_at).total_seconds() <= self.stale_lock_seconds:
                return None
            logger.warning(f"Removing stale {collection} record for camp {camp_id} (acquired {acquired_at})")
            locks.delete(existing.id)

        try:
            return locks.create({"camp_id": camp_id, "acquired_at": utc_now().isoformat()}).id
        except ClientResponseError as e:
            if e.status != 400:
                raise
        return None

    def _release_lock(self, collection: str, lock_id: str, camp_id: str) -> None:
        try:
            self.pb.collection(collection).delete(lock_id)
        except ClientResponseError as e:
            if e.status != 404:
                raise
            logger.warning(f"Lock {lock_id} in {collection} for camp {camp_id} was already released")

    def acquire_run_lock(self, camp_id: str) -> None:
        lock_id = self._claim_lock(RUN_LOCKS, camp_id)
        if lock_id is None:
            raise RunInProgressError(camp_id)
        self._run_lock_ids[camp_id] = lock_id

    def release_run_lock(self, camp_id: str) -> None:
        # Only the record this store created
        lock_id = self._run_lock_ids.pop(camp_id, None)
        if lock_id is None:
            logger.warning(f"No grouping run lock held for camp {camp_id}")
            return
        self._release_lock(RUN_LOCKS, lock_id, camp_id)

    @contextmanager
    def camp_lock(self, camp_id: str) -> Iterator[None]:
        # Threads of this process queue locally; other processes are kept out by the lock record
        with self._camp_locks_guard:
            local_lock = self._camp_locks[camp_id]
        with local_lock:
            lock_id = self._wait_for_camp_lock(camp_id)
            try:
                yield
            finally:
                self._release_lock(CAMP_LOCKS, lock_id, camp_id)

    def _wait_for_camp_lock(self, camp_id: str) -> str:
        started = time.monotonic()
        while True:
            lock_id = self._claim_lock(CAMP_LOCKS, camp_id)
            if lock_id is not None:
                return lock_id
            waited = time.monotonic() - started
            if waited >= self.camp_lock_wait_seconds:
                raise CampLockTimeoutError(camp_id, waited)
            logger.log(TRACE, f"Camp {camp_id} is locked by another process, retrying")
            time.sleep(LOCK_POLL_SECONDS)
