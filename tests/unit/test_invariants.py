"""Unit tests for golden projection invariants."""

from __future__ import annotations

import copy

import pytest

from conftest import FixedPlanner, make_projection
from deep_session import Choice, GoldenInvariantError
from deep_session.golden.invariants import assert_golden_invariants, check_golden_invariants


@pytest.fixture
def projection() -> dict:
    return make_projection()


def _index_of(events, event_type: str) -> int:
    return next(i for i, event in enumerate(events) if event["type"] == event_type)


class TestValidRuns:
    """Projections produced by the runner satisfy every invariant."""

    def test_l1_only_run(self, projection: dict) -> None:
        assert check_golden_invariants(projection).valid

    def test_run_through_l2(self) -> None:
        result = check_golden_invariants(
            make_projection(Choice.A, {"stop_on_gates": False}, l2_planner=FixedPlanner())
        )
        assert result.valid, result.violations

    def test_not_sure_run(self) -> None:
        assert check_golden_invariants(make_projection(Choice.NOT_SURE)).valid

    def test_assert_passes_silently(self, projection: dict) -> None:
        assert_golden_invariants(projection)


class TestMalformedInput:
    def test_not_an_object(self) -> None:
        result = check_golden_invariants(["events"])
        assert result.valid is False
        assert result.violations == ("snapshot is not an object",)

    def test_missing_sections(self) -> None:
        result = check_golden_invariants({})
        assert "events missing or empty" in result.violations
        assert "final missing" in result.violations


class TestEventBoundaries:
    def test_missing_start(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        broken["events"].pop(0)
        violations = check_golden_invariants(broken).violations
        assert "expected exactly one session_start, found 0" in violations

    def test_start_not_first(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        events = broken["events"]
        events[0], events[1] = events[1], events[0]
        violations = check_golden_invariants(broken).violations
        assert any("session_start must be the first event" in v for v in violations)

    def test_end_not_last(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        events = broken["events"]
        events[-1], events[-2] = events[-2], events[-1]
        violations = check_golden_invariants(broken).violations
        assert any("session_end must be the last event" in v for v in violations)

    def test_duplicate_end(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        broken["events"].append(dict(broken["events"][-1]))
        violations = check_golden_invariants(broken).violations
        assert "expected exactly one session_end, found 2" in violations


class TestCards:
    def test_duplicate_card_shown(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        events = broken["events"]
        shown = events[_index_of(events, "card_shown")]
        events.insert(len(events) - 1, dict(shown))
        violations = check_golden_invariants(broken).violations
        assert any(v.startswith("duplicate card_shown for step=0 card=L1_val") for v in violations)

    def test_answer_without_shown_card(self, projection: dict) -> None:
        broken = copy.deepcopy(projection)
        events = broken["events"]
        events[_index_of(events, "answer_committed")]["step"] = 99
        violations = check_golden_invariants(broken).violations
        assert any("answer_committed for step=99" in v for v in violations)

    def test_l1_after_l2(self) -> None:
        projection = make_projection(Choice.A, {"stop_on_gates": False})
        events = projection["events"]
        l2_index = next(
            i for i, e in enumerate(events) if e["type"] == "card_shown" and e.get("layer") == "L2"
        )
        first_l1 = dict(events[_index_of(events, "card_shown")])
        first_l1["step"] = 1000
        events.insert(l2_index + 1, first_l1)
        violations = check_golden_invariants(projection).violations
        assert any("shown after the first L2 card" in v for v in violations)


class TestFinal:
    def test_phase_must_be_ended(self, projection: dict) -> None:
        projection["final"]["phase"] = "L1"
        assert "final.phase must be ENDED (got L1)" in check_golden_invariants(projection).violations

    def test_missing_reason(self, projection: dict) -> None:
        projection["final"]["ended_reason"] = None
        assert "final.ended_reason missing" in check_golden_invariants(projection).violations

    def test_unknown_reason(self, projection: dict) -> None:
        projection["final"]["ended_reason"] = "bored"
        violations = check_golden_invariants(projection).violations
        assert "final.ended_reason 'bored' is not a known reason" in violations

    def test_cap_exceeded(self, projection: dict) -> None:
        projection["config"]["max_l1"] = 2
        violations = check_golden_invariants(projection).violations
        assert "asked_l1_count (5) exceeds max_l1 (2)" in violations

    def test_empty_plan_cannot_complete(self, projection: dict) -> None:
        projection["final"]["ended_reason"] = "l2_plan_completed"
        violations = check_golden_invariants(projection).violations
        assert any("no L2 card was asked" in v for v in violations)

    def test_count_parity(self, projection: dict) -> None:
        projection["final"]["asked_l1_count"] = 4
        violations = check_golden_invariants(projection).violations
        assert "asked_l1_count mismatch: final=4, derived from events=5" in violations

    def test_micro_tuple(self, projection: dict) -> None:
        projection["final"]["micro"] = {"selected": "down.lonely", "source": "not_computed"}
        violations = check_golden_invariants(projection).violations
        assert any("micro.source=not_computed" in v for v in violations)

    def test_missing_micro(self, projection: dict) -> None:
        del projection["final"]["micro"]
        assert "final.micro missing" in check_golden_invariants(projection).violations


class TestAssert:
    def test_all_violations_collected(self, projection: dict) -> None:
        projection["final"]["phase"] = "L2"
        projection["config"]["max_l1"] = 1
        with pytest.raises(GoldenInvariantError) as excinfo:
            assert_golden_invariants(projection)
        assert len(excinfo.value.violations) == 2
        assert "Golden invariant violation" in str(excinfo.value)
