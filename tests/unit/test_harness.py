"""Unit tests for the golden session harness."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from conftest import NEUTRAL_BASELINE
from deep_session import ContractViolationError, Phase
from deep_session.golden.fixtures import FixtureCase, load_fixture, load_fixtures
from deep_session.golden.harness import (
    DEBUG_EVENT_TAIL,
    FixtureOutcome,
    FixtureReport,
    RunSummary,
    check_fixture,
    run_fixture,
    run_golden_sessions,
    snapshot_diff,
)
from deep_session.golden.snapshots import read_snapshot, snapshot_path, write_snapshot

L2_FREE_ID = "GS04_max_l2_zero"


@pytest.fixture
def case() -> FixtureCase:
    return load_fixtures(only=[L2_FREE_ID])[0]


def _custom_case(tmp_path: Path, **overrides: Any) -> FixtureCase:
    doc: Dict[str, Any] = {
        "id": "GS_custom",
        "seed": 5,
        "baseline_metrics": dict(NEUTRAL_BASELINE),
        "flow_config_overrides": {"max_l2": 0, "min_l2": 0, "stop_on_gates": False},
    }
    doc.update(overrides)
    path = tmp_path / "GS_custom.fixture.json"
    path.write_text(json.dumps(doc), encoding="utf-8")
    return load_fixture(path)


class TestRunFixture:
    """Driving a single fixture to the end."""

    def test_session_ends(self, case: FixtureCase) -> None:
        run = run_fixture(case)
        assert run.state.phase is Phase.ENDED
        assert run.projection["final"]["ended_reason"] == "no_l2_candidates"
        assert run.projection["config"]["fixture_hash"] == case.fixture_hash

    def test_deterministic(self, case: FixtureCase) -> None:
        assert run_fixture(case).projection == run_fixture(case).projection

    def test_hard_cap(self, case: FixtureCase) -> None:
        with pytest.raises(ContractViolationError, match="still open after 1 iterations"):
            run_fixture(case, hard_cap=1)

    @pytest.mark.parametrize("fixture_id", [c.id for c in load_fixtures()])
    def test_bundled_fixtures_end(self, fixture_id: str) -> None:
        run = run_fixture(load_fixtures(only=[fixture_id])[0])
        assert run.projection["final"]["phase"] == "ENDED"
        assert run.projection["events"][-1]["type"] == "session_end"


class TestCheckFixture:
    def test_update_then_pass(self, case: FixtureCase, tmp_path: Path) -> None:
        updated = check_fixture(case, tmp_path, update=True)
        assert updated.outcome is FixtureOutcome.UPDATED
        assert snapshot_path(tmp_path, case.id).exists()
        assert check_fixture(case, tmp_path).outcome is FixtureOutcome.PASS

    def test_missing_snapshot(self, case: FixtureCase, tmp_path: Path) -> None:
        report = check_fixture(case, tmp_path)
        assert report.outcome is FixtureOutcome.FAIL
        assert report.problems == (f"missing snapshot {case.id}.snapshot.json; rerun with --update",)

    def test_unreadable_snapshot(self, case: FixtureCase, tmp_path: Path) -> None:
        snapshot_path(tmp_path, case.id).write_text("{", encoding="utf-8")
        report = check_fixture(case, tmp_path)
        assert report.problems[0].startswith("cannot read snapshot")

    def test_mismatch_has_diff(self, case: FixtureCase, tmp_path: Path) -> None:
        check_fixture(case, tmp_path, update=True)
        path = snapshot_path(tmp_path, case.id)
        stored = read_snapshot(path)
        stored["final"]["asked_l1_count"] = 99
        write_snapshot(path, stored)

        report = check_fixture(case, tmp_path, debug=True)
        assert report.outcome is FixtureOutcome.FAIL
        assert report.problems == ("snapshot mismatch",)
        assert '-    "asked_l1_count": 99,' in report.diff
        assert 0 < len(report.debug_events) <= DEBUG_EVENT_TAIL

    def test_stale_fixture_hash(self, case: FixtureCase, tmp_path: Path) -> None:
        check_fixture(case, tmp_path, update=True)
        path = snapshot_path(tmp_path, case.id)
        stored = read_snapshot(path)
        stored["config"]["fixture_hash"] = "0" * 40
        write_snapshot(path, stored)

        report = check_fixture(case, tmp_path)
        assert report.outcome is FixtureOutcome.FAIL
        assert report.problems[0].startswith("stale snapshot: fixture hash changed")
        assert report.diff == ""

    def test_stale_version(self, case: FixtureCase, tmp_path: Path) -> None:
        check_fixture(case, tmp_path, update=True)
        path = snapshot_path(tmp_path, case.id)
        stored = read_snapshot(path)
        stored["config"]["snapshot_version"] = "0.0.1"
        write_snapshot(path, stored)

        problems = check_fixture(case, tmp_path).problems
        assert any(p.startswith("stale snapshot: snapshot version '0.0.1'") for p in problems)

    def test_failed_expectation_blocks_update(self, tmp_path: Path) -> None:
        custom = _custom_case(tmp_path, expect={"ended_reason": "gates_closed"})
        snapshots = tmp_path / "snapshots"
        report = check_fixture(custom, snapshots, update=True)
        assert report.outcome is FixtureOutcome.FAIL
        assert report.problems == ("expected ended_reason=gates_closed, got no_l2_candidates",)
        assert not snapshot_path(snapshots, custom.id).exists()

    def test_aborted_run_reported(self, tmp_path: Path) -> None:
        custom = _custom_case(tmp_path, forced_l1_card_order=["L1_unknown"])
        report = check_fixture(custom, tmp_path / "snapshots", update=True)
        assert report.outcome is FixtureOutcome.FAIL
        assert "L1_unknown" in report.problems[0]


class TestReports:
    def test_summary_flags(self) -> None:
        summary = RunSummary(
            [
                FixtureReport("a", FixtureOutcome.PASS),
                FixtureReport("b", FixtureOutcome.UPDATED),
            ]
        )
        assert summary.ok
        summary.reports.append(FixtureReport("c", FixtureOutcome.FAIL, problems=("x",)))
        assert not summary.ok
        assert [report.fixture_id for report in summary.failed] == ["c"]

    def test_snapshot_diff_labels(self) -> None:
        diff = snapshot_diff({"a": 1}, {"a": 2}, "GS_x")
        assert "--- GS_x (stored)" in diff
        assert "+++ GS_x (current)" in diff
        assert snapshot_diff({"a": 1}, {"a": 1}, "GS_x") == ""


class TestRunGoldenSessions:
    def test_update_and_check_selected(self, tmp_path: Path) -> None:
        updated = run_golden_sessions(snapshots_dir=tmp_path, only=[L2_FREE_ID], update=True)
        assert [r.outcome for r in updated.reports] == [FixtureOutcome.UPDATED]
        checked = run_golden_sessions(snapshots_dir=tmp_path, only=[L2_FREE_ID])
        assert checked.ok
        assert [p.name for p in tmp_path.iterdir()] == [f"{L2_FREE_ID}.snapshot.json"]
