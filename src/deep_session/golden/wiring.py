"""Wire a golden fixture into runner collaborators and an answer source."""
from __future__ import annotations

from typing import Callable, Iterator, Optional

from deep_session.deps import RandomSource, RunnerDeps
from deep_session.golden.fixtures import GoldenFixture
from deep_session.models import Card, Choice
from deep_session.profiles import sample_answer
from deep_session.reference import build_runner_deps
from deep_session.rng import SeededRandom

AnswerSource = Callable[[Card], Choice]

FORCED_ANSWER_CHOICES = {
    "left": Choice.A,
    "right": Choice.B,
    "not_sure": Choice.NOT_SURE,
}


def make_answer_source(fixture: GoldenFixture, rng: RandomSource) -> AnswerSource:
    """Build the answer callback for a fixture.

    Forced answers are consumed in order; once exhausted, answers are
    sampled from the policy profile (or the config profile). The config's
    ``not_sure_rate`` only overrides the profile rate when the fixture
    sets it explicitly.
    """
    config = fixture.flow_config()
    profile = fixture.answer_policy.profile or config.profile
    rate: Optional[float] = (
        config.not_sure_rate
        if "not_sure_rate" in fixture.flow_config_overrides
        else None
    )
    forced: Iterator[str] = iter(fixture.answer_policy.forced_answers)

    def answer(card: Card) -> Choice:
        label = next(forced, None)
        if label is not None:
            return FORCED_ANSWER_CHOICES[label]
        return sample_answer(card, profile, rng, not_sure_rate=rate)

    return answer


def build_fixture_deps(fixture: GoldenFixture, rng: Optional[RandomSource] = None) -> RunnerDeps:
    """Reference runner deps for a fixture, seeded from the fixture seed."""
    return build_runner_deps(
        fixture.flow_config(),
        rng if rng is not None else SeededRandom(fixture.seed),
        forced_l1_order=fixture.forced_l1_card_order,
    )
