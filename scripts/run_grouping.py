#!/usr/bin/env python3
"""
Operator CLI for the camp grouping engine.

Commands:
    run        Run (or re-run) grouping for a camp
    move       Move a camper to another group
    resolve    Resolve a violation (accepted, dismissed, ...)
    finalize   Lock a camp's groups
    unfinalize Reopen a finalized camp
    report     Print the group report
    runs       List past grouping runs

Connection details come from .env (POCKETBASE_URL, POCKETBASE_ADMIN_EMAIL,
POCKETBASE_ADMIN_PASSWORD). Example:
    uv run python scripts/run_grouping.py run --camp abc123 --type rerun
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from grouping import GroupingEngine, GroupingError, ResolutionType, RunType, format_report
from grouping.config import ConfigLoader
from grouping.logging_config import configure_logging
from grouping.settings import get_settings
from grouping.store import PocketBaseGroupingStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Camp grouping engine")
    parser.add_argument("--camp", help="Camp id (defaults to DEFAULT_CAMP_ID)")
    parser.add_argument("--actor", help="User recorded on runs and moves (defaults to DEFAULT_ACTOR)")
    parser.add_argument("--debug", action="store_true", help="Log placement decisions")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run grouping for a camp")
    run.add_argument("--type", choices=[t.value for t in RunType], default=RunType.INITIAL.value)
    run.add_argument("--reason", default="", help="Why the run was triggered")

    move = sub.add_parser("move", help="Move a camper to another group")
    move.add_argument("camper_id")
    move.add_argument("group_id")
    move.add_argument("--reason", required=True)

    resolve = sub.add_parser("resolve", help="Resolve a violation")
    resolve.add_argument("violation_id")
    resolve.add_argument(
        "--as",
        dest="resolution",
        choices=[ResolutionType.ACCEPTED.value, ResolutionType.DISMISSED.value],
        default=ResolutionType.ACCEPTED.value,
    )
    resolve.add_argument("--note")

    sub.add_parser("finalize", help="Lock the camp's groups")
    sub.add_parser("unfinalize", help="Reopen a finalized camp")

    report = sub.add_parser("report", help="Print the group report")
    report.add_argument("--json", action="store_true", help="Print JSON instead of text")

    sub.add_parser("runs", help="List past grouping runs")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(source="cli", debug=args.debug or None)

    settings = get_settings()
    camp_id = args.camp or settings.default_camp_id
    actor = args.actor or settings.default_actor
    if not camp_id and args.command not in ("move", "resolve"):
        print("ERROR: --camp is required (or set DEFAULT_CAMP_ID)")
        return 2

    try:
        store = PocketBaseGroupingStore.from_settings()
        config = ConfigLoader.initialize(pb_client=store.pb)
        engine = GroupingEngine(store, config=config, debug=args.debug)

        if args.command == "run":
            run = engine.run_grouping(camp_id, RunType(args.type), triggered_by=actor, trigger_reason=args.reason)
            print(
                f"Run {run.id}: {run.total_campers} campers, {run.campers_auto_placed} auto-placed, "
                f"{run.friend_groups_placed_intact} clusters intact, {run.friend_groups_split} split, "
                f"{run.constraint_violations} open violations"
            )
            for warning in run.warnings:
                print(f"  warning: {warning}")

        elif args.command == "move":
            result = engine.move_camper(
                args.camper_id, args.group_id, args.reason, moved_by=actor, camp_id=args.camp or None
            )
            if result.assignment is None:
                print(f"{result.entry.full_name} is already in that group")
            else:
                print(f"Moved {result.entry.full_name}")
            for violation in result.raised_violations:
                print(f"  raised: {violation.title}")
            for violation in result.resolved_violations:
                print(f"  resolved: {violation.title}")

        elif args.command == "resolve":
            violation = engine.resolve_violation(
                args.violation_id, ResolutionType(args.resolution), resolved_by=actor, note=args.note
            )
            print(f"{violation.title}: {violation.resolution_type.value if violation.resolution_type else ''}")

        elif args.command == "finalize":
            state = engine.finalize_grouping(camp_id, finalized_by=actor)
            print(f"Camp {camp_id} is {state.camp.grouping_status.value}")

        elif args.command == "unfinalize":
            state = engine.unfinalize_grouping(camp_id, user_id=actor)
            print(f"Camp {camp_id} is {state.camp.grouping_status.value}")

        elif args.command == "report":
            report = engine.build_group_report(camp_id)
            if args.json:
                print(json.dumps(report.model_dump(mode="json"), indent=2))
            else:
                print(format_report(report))

        elif args.command == "runs":
            for past in engine.list_runs(camp_id):
                status = "ok" if past.success else f"FAILED ({past.error_message})"
                print(
                    f"{past.created_at.isoformat()} {past.id} {past.run_type.value:<11} "
                    f"{past.total_campers:>4} campers {past.constraint_violations:>3} violations {status}"
                )

    except GroupingError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
