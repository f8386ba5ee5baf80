"""Tests for the PocketBase store against a mocked client."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from pocketbase.client import ClientResponseError  # type: ignore[attr-defined]

from grouping.errors import CampLockTimeoutError, CampNotFoundError, RunInProgressError
from grouping.models import (
    AssignmentType,
    CampGroup,
    GroupAssignment,
    GroupingRun,
    GroupingStatus,
    GroupingWriteSet,
    RunType,
)
from grouping.store import PocketBaseGroupingStore
from grouping.store.pocketbase_store import record_data

from .factories import CAMP_ID, create_entries, create_records


def response_error(status: int) -> ClientResponseError:
    error = ClientResponseError("boom")
    error.status = status
    return error


@pytest.fixture
def store(mock_pocketbase):
    return PocketBaseGroupingStore(mock_pocketbase)


def collection(store):
    return store.pb.collection.return_value


class TestRecordData:
    def test_drops_metadata_and_empty_values(self):
        record = SimpleNamespace(
            id="r1",
            collection_id="c1",
            collection_name="camp_groups",
            created="2025-01-01",
            updated="2025-01-01",
            expand={},
            group_number=2,
            group_name="",
            group_color=None,
        )

        assert record_data(record) == {"id": "r1", "group_number": 2}


class TestReads:
    def test_load_camp(self, store):
        collection(store).get_one.return_value = SimpleNamespace(
            id=CAMP_ID,
            name="Summer Session 1",
            start_date="2025-07-07 00:00:00.000Z",
            end_date="",
            max_group_size=10,
            num_groups=None,
            grouping_status="auto_grouped",
            grouping_finalized_at="",
        )

        camp = store.load_camp(CAMP_ID)

        assert camp.start_date == date(2025, 7, 7)
        assert camp.end_date is None
        assert camp.max_group_size == 10
        assert camp.num_groups is None
        assert camp.grouping_status == GroupingStatus.AUTO_GROUPED

    def test_missing_camp(self, store):
        collection(store).get_one.side_effect = response_error(404)

        with pytest.raises(CampNotFoundError):
            store.load_camp("nope")

    def test_other_errors_propagate(self, store):
        collection(store).get_one.side_effect = response_error(500)

        with pytest.raises(ClientResponseError):
            store.get_group("g1")

    def test_load_roster_maps_registration_and_athlete(self, store):
        athlete = SimpleNamespace(
            id="ath001",
            first_name="Maya",
            last_name="Lopez",
            date_of_birth="2016-03-15 00:00:00.000Z",
            grade="3rd",
            medical_notes="",
            allergies="peanuts",
        )
        registration = SimpleNamespace(
            id="reg001",
            friend_request_athlete_ids=["ath002"],
            friend_requests=["Ava Chen"],
            special_considerations="",
            created="2025-03-01 09:00:00.000Z",
            expand={"athlete_id": athlete},
        )
        collection(store).get_full_list.return_value = [registration]

        roster = store.load_roster(CAMP_ID)

        store.pb.collection.assert_called_with("registrations")
        query = collection(store).get_full_list.call_args.kwargs["query_params"]
        assert query["filter"] == f'camp_id = "{CAMP_ID}" && status = "confirmed"'
        assert query["expand"] == "athlete_id"

        record = roster[0]
        assert record.registration_id == "reg001"
        assert record.athlete_id == "ath001"
        assert record.grade_from_registration == "3rd"
        assert record.friend_request_athlete_ids == ["ath002"]
        assert record.friend_request_names == ["Ava Chen"]
        assert record.registered_at == datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
        assert record.medical_notes is None
        assert record.allergies == "peanuts"

    def test_registration_without_athlete_skipped(self, store):
        collection(store).get_full_list.return_value = [
            SimpleNamespace(id="reg009", created="2025-03-01 09:00:00.000Z", expand={})
        ]

        assert store.load_roster(CAMP_ID) == []

    def test_load_entries_round_trip(self, store):
        entry = create_entries(create_records(1))[0]
        collection(store).get_full_list.return_value = [SimpleNamespace(**entry.model_dump(mode="json"))]

        loaded = store.load_entries(CAMP_ID)

        assert loaded == [entry]


class TestApply:
    def test_batch_order(self, store):
        entries = create_entries(create_records(1))
        group = CampGroup(camp_id=CAMP_ID, group_number=1)
        run = GroupingRun(camp_id=CAMP_ID, run_type=RunType.INITIAL, max_group_size=12, num_groups=5, max_grade_spread=2)
        assignment = GroupAssignment(
            camp_id=CAMP_ID,
            camper_session_id=entries[0].id,
            to_group_id=group.id,
            assignment_type=AssignmentType.AUTO,
            reason="balanced placement",
        )
        write_set = GroupingWriteSet(
            camp_id=CAMP_ID,
            upsert_entries=entries,
            delete_entry_ids=["old_entry"],
            upsert_groups=[group],
            delete_group_ids=["old_group"],
            new_assignments=[assignment],
            run=run,
            camp_status=GroupingStatus.AUTO_GROUPED,
        )

        requests = store.build_batch_requests(write_set)

        assert [(r["method"], r["url"]) for r in requests] == [
            ("PUT", "/api/collections/camp_groups/records"),
            ("DELETE", "/api/collections/camper_session_data/records/old_entry"),
            ("PUT", "/api/collections/camper_session_data/records"),
            ("DELETE", "/api/collections/camp_groups/records/old_group"),
            ("POST", "/api/collections/grouping_runs/records"),
            ("POST", "/api/collections/group_assignments/records"),
            ("PATCH", f"/api/collections/camps/records/{CAMP_ID}"),
        ]
        assert requests[-1]["body"] == {
            "grouping_status": "auto_grouped",
            "grouping_finalized_at": "",
            "grouping_finalized_by": "",
        }

    def test_finalized_camp_patch(self, store):
        finalized_at = datetime(2025, 6, 30, 12, 0, tzinfo=UTC)
        write_set = GroupingWriteSet(
            camp_id=CAMP_ID,
            camp_status=GroupingStatus.FINALIZED,
            camp_finalized_by="director",
            camp_finalized_at=finalized_at,
        )

        (patch,) = store.build_batch_requests(write_set)

        assert patch["body"]["grouping_finalized_at"] == finalized_at.isoformat()
        assert patch["body"]["grouping_finalized_by"] == "director"

    def test_apply_sends_one_batch(self, store):
        group = CampGroup(camp_id=CAMP_ID, group_number=1)

        store.apply(GroupingWriteSet(camp_id=CAMP_ID, upsert_groups=[group]))

        store.pb.send.assert_called_once()
        path, options = store.pb.send.call_args.args
        assert path == "/api/batch"
        assert options["method"] == "POST"
        assert len(options["body"]["requests"]) == 1

    def test_empty_write_set_sends_nothing(self, store):
        store.apply(GroupingWriteSet(camp_id=CAMP_ID))

        store.pb.send.assert_not_called()


class TestRunLock:
    def test_acquire_creates_lock(self, store):
        store.acquire_run_lock(CAMP_ID)

        data = collection(store).create.call_args.args[0]
        assert data["camp_id"] == CAMP_ID
        assert "acquired_at" in data

    def test_fresh_lock_rejects_second_run(self, store):
        locks = collection(store)
        locks.create.side_effect = response_error(400)
        locks.get_first_list_item.return_value = SimpleNamespace(
            id="lock1", acquired_at=datetime.now(UTC).isoformat()
        )

        with pytest.raises(RunInProgressError):
            store.acquire_run_lock(CAMP_ID)

        locks.delete.assert_not_called()

    def test_stale_lock_is_replaced(self, store):
        locks = collection(store)
        locks.create.side_effect = [response_error(400), Mock(id="lock2")]
        stale = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
        locks.get_first_list_item.return_value = SimpleNamespace(id="lock1", acquired_at=stale)

        store.acquire_run_lock(CAMP_ID)

        locks.delete.assert_called_once_with("lock1")
        assert locks.create.call_count == 2

    def test_unexpected_error_propagates(self, store):
        collection(store).create.side_effect = response_error(500)

        with pytest.raises(ClientResponseError):
            store.acquire_run_lock(CAMP_ID)


    def test_release_deletes_own_lock(self, store):
        collection(store).create.return_value = Mock(id="lock1")
        store.acquire_run_lock(CAMP_ID)

        store.release_run_lock(CAMP_ID)

        collection(store).delete.assert_called_once_with("lock1")
        collection(store).get_first_list_item.assert_not_called()

    def test_release_after_takeover_leaves_new_holder(self, store):
        """The slow holder's record was replaced as stale; its release must not remove the new guard."""
        locks = collection(store)
        locks.create.return_value = Mock(id="lock1")
        store.acquire_run_lock(CAMP_ID)
        locks.delete.side_effect = response_error(404)
        locks.get_first_list_item.return_value = SimpleNamespace(id="lock2", acquired_at=datetime.now(UTC).isoformat())

        store.release_run_lock(CAMP_ID)

        locks.delete.assert_called_once_with("lock1")

    def test_release_missing_lock_warns(self, store, caplog):
        store.acquire_run_lock(CAMP_ID)
        collection(store).delete.side_effect = response_error(404)

        store.release_run_lock(CAMP_ID)

        assert "already released" in caplog.text

    def test_release_without_acquire_warns(self, store, caplog):
        store.release_run_lock(CAMP_ID)

        collection(store).delete.assert_not_called()
        assert "No grouping run lock held" in caplog.text


class TestCampLock:
    def test_lock_record_held_for_block(self, store):
        locks = collection(store)
        locks.create.return_value = Mock(id="camp_lock1")

        with store.camp_lock(CAMP_ID):
            store.pb.collection.assert_called_with("grouping_camp_locks")
            assert locks.create.call_args.args[0]["camp_id"] == CAMP_ID
            locks.delete.assert_not_called()

        locks.delete.assert_called_once_with("camp_lock1")

    def test_released_when_block_raises(self, store):
        collection(store).create.return_value = Mock(id="camp_lock1")

        with pytest.raises(RuntimeError):
            with store.camp_lock(CAMP_ID):
                raise RuntimeError("batch rejected")

        collection(store).delete.assert_called_once_with("camp_lock1")

    def test_claims_lock_released_in_between(self, store):
        locks = collection(store)
        locks.create.side_effect = [response_error(400), Mock(id="camp_lock2")]
        locks.get_first_list_item.side_effect = response_error(404)

        with store.camp_lock(CAMP_ID):
            pass

        assert locks.create.call_count == 2
        locks.delete.assert_called_once_with("camp_lock2")

    def test_retries_while_held_elsewhere(self, store, monkeypatch):
        sleep = Mock()
        monkeypatch.setattr("grouping.store.pocketbase_store.time.sleep", sleep)
        locks = collection(store)
        held = SimpleNamespace(id="other", acquired_at=datetime.now(UTC).isoformat())
        locks.create.side_effect = [response_error(400), response_error(400), Mock(id="camp_lock3")]
        locks.get_first_list_item.side_effect = [held, response_error(404)]

        with store.camp_lock(CAMP_ID):
            pass

        sleep.assert_called_once()
        locks.delete.assert_called_once_with("camp_lock3")

    def test_times_out(self, mock_pocketbase):
        store = PocketBaseGroupingStore(mock_pocketbase, camp_lock_wait_seconds=0)
        locks = collection(store)
        locks.create.side_effect = response_error(400)
        locks.get_first_list_item.return_value = SimpleNamespace(
            id="other", acquired_at=datetime.now(UTC).isoformat()
        )

        with pytest.raises(CampLockTimeoutError):
            with store.camp_lock(CAMP_ID):
                pass

        locks.delete.assert_not_called()
