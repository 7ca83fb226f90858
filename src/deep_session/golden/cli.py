"""Command line entry point for golden session tooling.

Subcommands: ``run`` (default), ``doctor``, ``summary`` and ``validate``.
Reports go to stdout, errors to stderr; the exit code is 0 on success and
1 on any failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from deep_session.golden.doctor import run_doctor
from deep_session.golden.fixtures import DEFAULT_FIXTURES_DIR
from deep_session.golden.harness import (
    DEFAULT_SNAPSHOTS_DIR,
    FixtureOutcome,
    run_golden_sessions,
)
from deep_session.golden.snapshots import validate_snapshot_dir
from deep_session.golden.summary import build_summary
from deep_session.models import FixtureError

_COMMANDS = ("run", "doctor", "summary", "validate")


def _split_ids(values: Optional[List[str]]) -> Optional[List[str]]:
    if not values:
        return None
    ids = [part.strip() for value in values for part in value.split(",")]
    return [fixture_id for fixture_id in ids if fixture_id] or None


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        summary = run_golden_sessions(
            args.fixtures_dir,
            args.snapshots_dir,
            only=_split_ids(args.only),
            update=args.update,
            debug=args.debug,
        )
    except FixtureError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if not summary.reports:
        print("ERROR: no fixtures found", file=sys.stderr)
        return 1

    for report in summary.reports:
        print(f"[{report.outcome.value}] {report.fixture_id}")
        if report.outcome is not FixtureOutcome.FAIL:
            continue
        for problem in report.problems:
            print(f"  - {problem}", file=sys.stderr)
        if report.diff and not args.no_diff:
            print(report.diff, file=sys.stderr)
        if report.debug_events:
            print(f"  last {len(report.debug_events)} events:", file=sys.stderr)
            for event in report.debug_events:
                print(f"    {json.dumps(event, sort_keys=True)}", file=sys.stderr)

    failed = summary.failed
    total = len(summary.reports)
    if failed:
        print(f"\n{len(failed)} of {total} golden sessions failed.", file=sys.stderr)
        return 1
    verb = "updated" if args.update else "passed"
    print(f"\nAll {total} golden sessions {verb}.")
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    try:
        report = run_doctor(args.fixtures_dir, args.snapshots_dir)
    except FixtureError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    print(report.render())
    return 0 if report.healthy else 1


def _cmd_summary(args: argparse.Namespace) -> int:
    try:
        markdown = build_summary(args.snapshots_dir)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"ERROR: cannot read snapshots: {exc}", file=sys.stderr)
        return 1
    if args.out is None:
        sys.stdout.write(markdown)
        return 0
    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text(markdown, encoding="utf-8")
    print(f"Summary written to {args.out}")
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    try:
        results = validate_snapshot_dir(args.snapshots_dir, strict=args.strict)
    except ImportError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    if not results:
        print(f"ERROR: no snapshots found in {args.snapshots_dir}", file=sys.stderr)
        return 1

    invalid = 0
    for snapshot_id, result in results.items():
        if result.valid:
            print(f"[VALID] {snapshot_id}")
            continue
        invalid += 1
        print(f"[INVALID] {snapshot_id}")
        for message in result.messages():
            print(f"  - {message}", file=sys.stderr)
    if invalid:
        print(f"\n{invalid} of {len(results)} snapshots are invalid.", file=sys.stderr)
        return 1
    print(f"\nAll {len(results)} snapshots are valid.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deep-session-golden",
        description="Run and maintain golden session snapshots",
    )
    sub = parser.add_subparsers(dest="command")

    def add_dirs(p: argparse.ArgumentParser, fixtures: bool = True) -> None:
        if fixtures:
            p.add_argument(
                "--fixtures-dir",
                type=Path,
                default=DEFAULT_FIXTURES_DIR,
                help="Directory of *.fixture.json files",
            )
        p.add_argument(
            "--snapshots-dir",
            type=Path,
            default=DEFAULT_SNAPSHOTS_DIR,
            help="Directory of *.snapshot.json files",
        )

    run = sub.add_parser("run", help="Check fixtures against stored snapshots")
    add_dirs(run)
    run.add_argument(
        "--only",
        "--id",
        dest="only",
        action="append",
        help="Comma separated fixture ids to run (repeatable)",
    )
    run.add_argument("--update", action="store_true", help="Rewrite snapshots")
    run.add_argument(
        "--debug", action="store_true", help="Print the last events of failing runs"
    )
    run.add_argument("--no-diff", action="store_true", help="Do not print snapshot diffs")
    run.set_defaults(func=_cmd_run)

    doctor = sub.add_parser("doctor", help="Report missing, orphaned and outdated snapshots")
    add_dirs(doctor)
    doctor.set_defaults(func=_cmd_doctor)

    summary = sub.add_parser("summary", help="Markdown table of stored snapshots")
    add_dirs(summary, fixtures=False)
    summary.add_argument("--out", type=Path, default=None, help="Write to this file")
    summary.set_defaults(func=_cmd_summary)

    validate = sub.add_parser("validate", help="Validate stored snapshots")
    add_dirs(validate, fixtures=False)
    validate.add_argument(
        "--strict", action="store_true", help="Require jsonschema for the schema layer"
    )
    validate.set_defaults(func=_cmd_validate)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for any failure)
    """
    args_list = list(sys.argv[1:] if argv is None else argv)
    if not args_list or args_list[0] not in _COMMANDS + ("-h", "--help"):
        args_list.insert(0, "run")
    args = build_parser().parse_args(args_list)
    result: int = args.func(args)
    return result


if __name__ == "__main__":
    sys.exit(main())
