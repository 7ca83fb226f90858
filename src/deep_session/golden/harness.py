"""Golden session harness: drive fixtures through the runner and compare.

Each fixture is run with its own SessionRunner and seeded random source,
projected, checked against the structural invariants and its expectations,
and then either written as a new snapshot (update mode) or compared with
the stored one.
"""

from __future__ import annotations

import difflib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from deep_session.events import SessionEvent
from deep_session.golden.expectations import check_expectations
from deep_session.golden.fixtures import FixtureCase, load_fixtures
from deep_session.golden.invariants import check_golden_invariants
from deep_session.golden.projection import (
    GOLDEN_SNAPSHOT_VERSION,
    build_stable_projection,
    count_mismatches,
    derive_counts_from_events,
)
from deep_session.golden.snapshots import (
    format_snapshot,
    read_snapshot,
    snapshot_path,
    write_snapshot,
)
from deep_session.golden.wiring import build_fixture_deps, make_answer_source
from deep_session.models import ContractViolationError, DeepSessionError
from deep_session.rng import SeededRandom
from deep_session.runner import SessionRunner
from deep_session.state import SessionState

logger = logging.getLogger("deep_session.golden.harness")

HARD_CAP = 64
DEBUG_EVENT_TAIL = 25
DEFAULT_SNAPSHOTS_DIR = Path(__file__).parent / "snapshots"

# ── Section 1: Running one fixture ───────────────────────────────────────────


@dataclass(frozen=True)
class SessionRun:
    """Raw output of driving one fixture to the end."""

    case: FixtureCase
    state: SessionState
    events: Tuple[SessionEvent, ...]
    projection: Dict[str, Any]


def run_fixture(case: FixtureCase, hard_cap: int = HARD_CAP) -> SessionRun:
    """Drive a fixture through the two-call protocol until the session ends.

    Raises:
        ContractViolationError: If the runner breaks its protocol, if the
            session is still open after hard_cap iterations, or if cached
            state counters disagree with the event log.
    """
    fixture = case.fixture
    rng = SeededRandom(fixture.seed)
    deps = build_fixture_deps(fixture, rng)
    answer = make_answer_source(fixture, rng)

    runner = SessionRunner(deps)
    runner.init(fixture.baseline_metrics, fixture.tags)
    for _ in range(hard_cap):
        next_card = runner.get_next_card()
        if next_card is None:
            break
        runner.commit_answer(next_card.card.id, answer(next_card.card))
    if not runner.is_ended:
        raise ContractViolationError(
            f"{case.id}: session still open after {hard_cap} iterations"
        )

    state = runner.get_state()
    events = runner.get_events()
    projection = build_stable_projection(
        case.id,
        deps.flow_config,
        fixture.seed,
        state,
        events,
        fixture_hash=case.fixture_hash,
    )
    mismatches = count_mismatches(state, derive_counts_from_events(projection["events"]))
    if mismatches:
        raise ContractViolationError(f"{case.id}: " + "; ".join(mismatches))
    return SessionRun(case=case, state=state, events=tuple(events), projection=projection)


# ── Section 2: Reports ───────────────────────────────────────────────────────


class FixtureOutcome(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    UPDATED = "UPDATED"


@dataclass(frozen=True)
class FixtureReport:
    """Outcome of one fixture, with every reason it failed."""

    fixture_id: str
    outcome: FixtureOutcome
    problems: Tuple[str, ...] = ()
    diff: str = ""
    debug_events: Tuple[Dict[str, Any], ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is not FixtureOutcome.FAIL


@dataclass
class RunSummary:
    reports: List[FixtureReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(report.ok for report in self.reports)

    @property
    def failed(self) -> List[FixtureReport]:
        return [report for report in self.reports if not report.ok]


def snapshot_diff(expected: Any, actual: Any, fixture_id: str) -> str:
    """Unified diff between the stored and the freshly produced snapshot."""
    lines = difflib.unified_diff(
        format_snapshot(expected).splitlines(keepends=True),
        format_snapshot(actual).splitlines(keepends=True),
        fromfile=f"{fixture_id} (stored)",
        tofile=f"{fixture_id} (current)",
    )
    return "".join(lines)


def _stale_reasons(stored: Any, case: FixtureCase) -> List[str]:
    config = stored.get("config") if isinstance(stored, dict) else None
    config = config if isinstance(config, dict) else {}
    reasons = []
    if config.get("fixture_hash") != case.fixture_hash:
        reasons.append(
            "stale snapshot: fixture hash changed "
            f"(stored={config.get('fixture_hash')}, current={case.fixture_hash}); rerun with --update"
        )
    if config.get("snapshot_version") != GOLDEN_SNAPSHOT_VERSION:
        reasons.append(
            "stale snapshot: snapshot version "
            f"{config.get('snapshot_version')!r} != {GOLDEN_SNAPSHOT_VERSION!r}; rerun with --update"
        )
    return reasons


def check_fixture(
    case: FixtureCase,
    snapshots_dir: Path,
    *,
    update: bool = False,
    debug: bool = False,
) -> FixtureReport:
    """Run one fixture and judge it against invariants, expectations and snapshot."""
    try:
        run = run_fixture(case)
    except DeepSessionError as exc:
        logger.error("Fixture %s aborted: %s", case.id, exc)
        return FixtureReport(case.id, FixtureOutcome.FAIL, problems=(str(exc),))

    projection = run.projection
    problems: List[str] = list(check_golden_invariants(projection).violations)
    problems.extend(check_expectations(case.fixture.expect, projection))
    debug_tail = tuple(projection["events"][-DEBUG_EVENT_TAIL:]) if debug else ()

    if problems:
        return FixtureReport(
            case.id, FixtureOutcome.FAIL, problems=tuple(problems), debug_events=debug_tail
        )

    path = snapshot_path(snapshots_dir, case.id)
    if update:
        write_snapshot(path, projection)
        return FixtureReport(case.id, FixtureOutcome.UPDATED)

    if not path.exists():
        return FixtureReport(
            case.id,
            FixtureOutcome.FAIL,
            problems=(f"missing snapshot {path.name}; rerun with --update",),
        )
    try:
        stored = read_snapshot(path)
    except (OSError, json.JSONDecodeError) as exc:
        return FixtureReport(
            case.id, FixtureOutcome.FAIL, problems=(f"cannot read snapshot: {exc}",)
        )

    stale = _stale_reasons(stored, case)
    if stale:
        return FixtureReport(case.id, FixtureOutcome.FAIL, problems=tuple(stale))
    if stored != projection:
        return FixtureReport(
            case.id,
            FixtureOutcome.FAIL,
            problems=("snapshot mismatch",),
            diff=snapshot_diff(stored, projection, case.id),
            debug_events=debug_tail,
        )
    return FixtureReport(case.id, FixtureOutcome.PASS)


def run_golden_sessions(
    fixtures_dir: Optional[Path] = None,
    snapshots_dir: Optional[Path] = None,
    *,
    only: Optional[Sequence[str]] = None,
    update: bool = False,
    debug: bool = False,
) -> RunSummary:
    """Check (or update) every selected fixture.

    Raises:
        FixtureError: If a fixture file is invalid or a requested id is unknown.
    """
    cases = load_fixtures(fixtures_dir, only=only)
    target = snapshots_dir or DEFAULT_SNAPSHOTS_DIR
    summary = RunSummary()
    for case in cases:
        report = check_fixture(case, target, update=update, debug=debug)
        logger.debug("Fixture %s: %s", case.id, report.outcome.value)
        summary.reports.append(report)
    return summary
