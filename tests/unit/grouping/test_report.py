"""Tests for the staff group report."""

from __future__ import annotations

from grouping.engine import GroupingEngine
from grouping.models import ResolutionType, ViolationType
from grouping.report import build_group_report, format_report
from tests.conftest import MockConfigLoader

from .factories import CAMP_ID, chain_cluster, create_camp, create_record, create_records, create_store


def report_for(records, camp=None):
    store = create_store(records, camp=camp)
    engine = GroupingEngine(store, config=MockConfigLoader())
    engine.run_grouping(CAMP_ID)
    return store, engine


class TestBuildGroupReport:
    def test_sections_in_group_order_with_sorted_rosters(self):
        records = [
            create_record(1, last_name="Zimmer"),
            create_record(2, last_name="Abbott"),
            create_record(3, last_name="Moreno"),
        ]
        _, engine = report_for(records, camp=create_camp(num_groups=1))

        report = engine.build_group_report(CAMP_ID)

        assert [s.group_number for s in report.groups] == [1]
        section = report.groups[0]
        assert [c.name for c in section.campers] == ["Camper2 Abbott", "Camper3 Moreno", "Camper1 Zimmer"]
        assert section.grade_range == "3rd"
        assert section.name == "Group 1"
        assert report.camp_name == "Summer Session 1"

    def test_friends_in_group_either_direction(self):
        records = [create_record(1, friends=[2]), create_record(2), create_record(3)]
        _, engine = report_for(records, camp=create_camp(num_groups=1))

        campers = {c.name: c for c in engine.build_group_report(CAMP_ID).groups[0].campers}

        assert campers["Camper1 Test001"].friends_in_group == ["Camper2 Test002"]
        assert campers["Camper2 Test002"].friends_in_group == ["Camper1 Test001"]
        assert campers["Camper3 Test003"].friends_in_group == []

    def test_summary_for_clean_grouping(self):
        _, engine = report_for(create_records(10, grades=(2, 3)))

        summary = engine.build_group_report(CAMP_ID).summary

        assert summary.total_campers == 10
        assert summary.placed_campers == 10
        assert summary.unplaced_campers == 0
        assert summary.all_constraints_satisfied is True
        assert sum(summary.counts_per_group.values()) == 10
        assert summary.open_violations == {}

    def test_unplaced_campers_listed(self):
        _, engine = report_for(create_records(3), camp=create_camp(num_groups=1, max_group_size=2))

        report = engine.build_group_report(CAMP_ID)

        assert len(report.unplaced) == 1
        assert report.summary.unplaced_campers == 1
        assert report.summary.all_constraints_satisfied is False
        assert report.summary.open_violations["impossible_placement"] == 1

    def test_group_issues_and_accepted_exceptions(self):
        store, engine = report_for(chain_cluster(list(range(1, 16))))
        split = next(
            v for v in store.load_violations(CAMP_ID) if v.violation_type == ViolationType.FRIEND_GROUP_SPLIT
        )
        engine.resolve_violation(split.id, ResolutionType.ACCEPTED, note="Known large group")

        report = engine.build_group_report(CAMP_ID)

        assert report.summary.accepted_exceptions == [f"{split.title} (Known large group)"]
        assert report.summary.all_constraints_satisfied is True

    def test_grade_discrepancy_flag_clears_when_resolved(self):
        store, engine = report_for([create_record(1, grade=5, grade_text="3rd")])
        state = engine.get_state(CAMP_ID)
        assert build_group_report(state).groups[0].campers[0].grade_discrepancy is True

        violation = next(v for v in store.load_violations(CAMP_ID) if not v.resolved)
        engine.resolve_violation(violation.id, ResolutionType.ACCEPTED)

        assert engine.build_group_report(CAMP_ID).groups[0].campers[0].grade_discrepancy is False

    def test_size_issue_shown_on_group(self):
        store, engine = report_for(create_records(4), camp=create_camp(num_groups=2, max_group_size=2))
        groups = sorted(store.load_groups(CAMP_ID), key=lambda g: g.group_number)
        camper = next(e for e in store.load_entries(CAMP_ID) if e.assigned_group_id == groups[0].id)
        engine.move_camper(camper.id, groups[1].id, reason="Counselor request")

        report = engine.build_group_report(CAMP_ID)

        assert report.groups[1].size_violation is True
        assert len(report.groups[1].open_issues) == 1
        assert report.summary.all_constraints_satisfied is False


class TestFormatReport:
    def test_text_layout(self):
        records = [create_record(1, friends=[2]), create_record(2)]
        _, engine = report_for(records, camp=create_camp(num_groups=1))

        text = format_report(engine.build_group_report(CAMP_ID))

        lines = text.splitlines()
        assert lines[0] == "Summer Session 1 (auto_grouped)"
        assert "Group 1: 2 campers, 3rd" in lines
        assert "  - Camper1 Test001 (3rd, age 9) with Camper2 Test002" in lines
        assert lines[-1] == "2/2 placed, all constraints satisfied"

    def test_unplaced_section(self):
        _, engine = report_for(create_records(2), camp=create_camp(num_groups=1, max_group_size=1))

        text = format_report(engine.build_group_report(CAMP_ID))

        assert "Unplaced: 1" in text
        assert text.endswith("1/2 placed, needs review")
