"""Property-based tests for full sessions on the reference decks."""
from typing import Any, Dict, List, Tuple

from hypothesis import HealthCheck, given, settings, strategies as st

from deep_session import Phase, SeededRandom, SessionRunner, create_flow_config
from deep_session.golden.invariants import check_golden_invariants
from deep_session.golden.projection import build_stable_projection
from deep_session.profiles import PROFILE_NAMES, sample_answer
from deep_session.reference import build_runner_deps
from deep_session.replay import reduce_session_events

CAP = 64

baseline_metrics = st.fixed_dictionaries(
    {
        name: st.integers(min_value=1, max_value=9)
        for name in ("valence", "energy", "tension", "clarity", "control", "social")
    }
)


@st.composite
def flow_overrides(draw):
    """Valid config overrides covering caps, quotas and switches."""
    max_l1 = draw(st.integers(min_value=1, max_value=10))
    max_l2 = draw(st.integers(min_value=0, max_value=6))
    return {
        "max_l1": max_l1,
        "min_l1": draw(st.integers(min_value=0, max_value=max_l1)),
        "max_l2": max_l2,
        "min_l2": draw(st.integers(min_value=0, max_value=max_l2)),
        "stop_on_gates": draw(st.booleans()),
        "coverage_first_enabled": draw(st.booleans()),
        "baseline_injection_enabled": draw(st.booleans()),
        "profile": draw(st.sampled_from(sorted(PROFILE_NAMES))),
    }


def run_session(
    seed: int, baseline: Dict[str, int], overrides: Dict[str, Any]
) -> Tuple[SessionRunner, Dict[str, Any]]:
    config = create_flow_config(overrides)
    rng = SeededRandom(seed)
    runner = SessionRunner(build_runner_deps(config, rng))
    runner.init(baseline)
    for _ in range(CAP):
        next_card = runner.get_next_card()
        if next_card is None:
            break
        runner.commit_answer(next_card.card.id, sample_answer(next_card.card, config.profile, rng))
    projection = build_stable_projection(
        "GS_property", config, seed, runner.get_state(), runner.get_events()
    )
    return runner, projection


class TestSessionProperties:
    """Every seeded session ends cleanly and reproducibly."""

    @settings(deadline=None, max_examples=60, suppress_health_check=[HealthCheck.too_slow])
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_session_terminates_within_caps(self, seed, baseline, overrides):
        runner, projection = run_session(seed, baseline, overrides)
        state = runner.get_state()
        assert state.phase is Phase.ENDED
        assert len(state.asked_l1_ids) <= overrides["max_l1"]
        assert len(state.asked_l2_ids) <= overrides["max_l2"]
        assert projection["final"]["ended_reason"] != "max_steps_reached"

    @settings(deadline=None, max_examples=60, suppress_health_check=[HealthCheck.too_slow])
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_golden_invariants_hold(self, seed, baseline, overrides):
        _, projection = run_session(seed, baseline, overrides)
        result = check_golden_invariants(projection)
        assert result.valid, result.violations

    @settings(deadline=None, max_examples=30)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_projection_deterministic(self, seed, baseline, overrides):
        _, first = run_session(seed, baseline, overrides)
        _, second = run_session(seed, baseline, overrides)
        assert first == second

    @settings(deadline=None, max_examples=40)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_replay_matches_state(self, seed, baseline, overrides):
        runner, _ = run_session(seed, baseline, overrides)
        state = runner.get_state()
        view = reduce_session_events(runner.get_events())
        assert view.anomalies == ()
        assert view.ended
        assert list(view.asked_l1_ids) == state.asked_l1_ids
        assert list(view.asked_l2_ids) == state.asked_l2_ids
        assert view.not_sure_count == state.not_sure_count
        assert view.gates_hit_any == state.gates_hit_any
        assert view.gates_hit_cards_only == state.gates_hit_cards_only
        assert view.ended_reason == state.ended_reason.value

    @settings(deadline=None, max_examples=40)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_steps_never_decrease(self, seed, baseline, overrides):
        runner, _ = run_session(seed, baseline, overrides)
        steps: List[int] = [event.step for event in runner.get_events()]
        assert steps == sorted(steps)

    @settings(deadline=None, max_examples=40)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_tiers_in_order(self, seed, baseline, overrides):
        runner, projection = run_session(seed, baseline, overrides)
        layers = [
            item["layer"] for item in projection["events"] if item["type"] == "card_shown"
        ]
        assert layers == sorted(layers)
        assert set(runner.get_state().asked_l1_ids).isdisjoint(runner.get_state().asked_l2_ids)


class TestProtocolProperties:
    @settings(deadline=None, max_examples=40)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics)
    def test_get_next_card_idempotent(self, seed, baseline):
        config = create_flow_config()
        rng = SeededRandom(seed)
        runner = SessionRunner(build_runner_deps(config, rng))
        runner.init(baseline)
        for _ in range(CAP):
            first = runner.get_next_card()
            event_count = len(runner.get_events())
            second = runner.get_next_card()
            assert second == first
            assert len(runner.get_events()) == event_count
            if first is None:
                break
            runner.commit_answer(first.card.id, sample_answer(first.card, config.profile, rng))
        assert runner.is_ended

    @settings(deadline=None, max_examples=40)
    @given(
        st.integers(min_value=0, max_value=10**6),
        baseline_metrics,
        st.integers(min_value=1, max_value=8),
    )
    def test_step_cap_bounds_commits(self, seed, baseline, max_steps):
        config = create_flow_config({"max_steps": max_steps, "stop_on_gates": False})
        rng = SeededRandom(seed)
        runner = SessionRunner(build_runner_deps(config, rng))
        runner.init(baseline)
        commits = 0
        for _ in range(CAP):
            next_card = runner.get_next_card()
            if next_card is None:
                break
            runner.commit_answer(next_card.card.id, sample_answer(next_card.card, config.profile, rng))
            commits += 1
        assert runner.is_ended
        assert commits <= max_steps

    @settings(deadline=None, max_examples=40)
    @given(st.integers(min_value=0, max_value=10**6), baseline_metrics, flow_overrides())
    def test_state_only_grows_between_commits(self, seed, baseline, overrides):
        config = create_flow_config(overrides)
        rng = SeededRandom(seed)
        runner = SessionRunner(build_runner_deps(config, rng))
        runner.init(baseline)
        previous = runner.get_state()
        for _ in range(CAP):
            next_card = runner.get_next_card()
            if next_card is None:
                break
            runner.commit_answer(next_card.card.id, sample_answer(next_card.card, config.profile, rng))
            current = runner.get_state()
            for gate, hit in previous.gates_hit_any.items():
                assert current.gates_hit_any[gate] or not hit
            for gate, hit in previous.gates_hit_cards_only.items():
                assert current.gates_hit_cards_only[gate] or not hit
            assert current.asked_l1_ids[: len(previous.asked_l1_ids)] == previous.asked_l1_ids
            assert current.asked_l2_ids[: len(previous.asked_l2_ids)] == previous.asked_l2_ids
            assert current.evidence_tags[: len(previous.evidence_tags)] == previous.evidence_tags
            assert current.step >= previous.step
            assert current.not_sure_count >= previous.not_sure_count
            previous = current
        assert runner.is_ended
