"""Unit tests for the seeded random source and answer profiles."""

from __future__ import annotations

import pytest

from conftest import make_card
from deep_session import Choice, SeededRandom
from deep_session.profiles import (
    MIX,
    MIX_COMPONENTS,
    NOT_SURE_RATES,
    PROFILE_NAMES,
    prefers_option_a,
    resolve_profile,
    sample_answer,
)


class _Counting:
    """Constant random source that counts draws."""

    def __init__(self, value: float) -> None:
        self.value = value
        self.draws = 0

    def __call__(self) -> float:
        self.draws += 1
        return self.value


class TestSeededRandom:
    """Reproducible LCG stream."""

    def test_first_value(self) -> None:
        assert SeededRandom(1)() == 58598 / 233280

    def test_same_seed_same_stream(self) -> None:
        a, b = SeededRandom(42), SeededRandom(42)
        assert [a() for _ in range(20)] == [b() for _ in range(20)]

    def test_different_seeds_differ(self) -> None:
        assert SeededRandom(1)() != SeededRandom(2)()

    def test_values_in_unit_interval(self) -> None:
        rng = SeededRandom(7)
        assert all(0.0 <= rng() < 1.0 for _ in range(500))

    def test_next_int_bounds(self) -> None:
        rng = SeededRandom(3)
        assert all(0 <= rng.next_int(4) < 4 for _ in range(100))
        with pytest.raises(ValueError):
            rng.next_int(0)

    def test_choice(self) -> None:
        assert SeededRandom(5).choice(["only"]) == "only"
        with pytest.raises(ValueError, match="empty"):
            SeededRandom(5).choice([])

    def test_repr(self) -> None:
        assert repr(SeededRandom(9)) == "SeededRandom(seed=9)"


class TestResolveProfile:
    def test_concrete_profile_draws_nothing(self) -> None:
        rng = _Counting(0.5)
        assert resolve_profile("somatic", rng) == "somatic"
        assert rng.draws == 0

    def test_mix_draws_component(self) -> None:
        rng = _Counting(0.0)
        assert resolve_profile(MIX, rng) == MIX_COMPONENTS[0]
        assert rng.draws == 1

    def test_unknown_profile(self) -> None:
        with pytest.raises(ValueError, match="Unknown profile"):
            resolve_profile("chaotic", _Counting(0.5))

    def test_every_profile_has_rate(self) -> None:
        assert set(NOT_SURE_RATES) == PROFILE_NAMES


class TestSampleAnswer:
    """Answer sampling per profile."""

    def test_preferred_cards(self) -> None:
        assert prefers_option_a("L1_body", "somatic") is True
        assert prefers_option_a("L1_clarity", "cognitive") is True
        assert prefers_option_a("L1_mood", "somatic") is False
        assert prefers_option_a("L1_body", "decisive") is False

    def test_not_sure_rate_override(self) -> None:
        card = make_card("L1_body", ["a"], ["b"])
        assert sample_answer(card, "decisive", _Counting(0.99), not_sure_rate=1.0) is Choice.NOT_SURE

    def test_profile_rate_used_by_default(self) -> None:
        card = make_card("L1_body", ["a"], ["b"])
        # 0.3 is below uncertain's rate and above decisive's
        assert sample_answer(card, "uncertain", _Counting(0.3)) is Choice.NOT_SURE
        assert sample_answer(card, "decisive", _Counting(0.3)) is Choice.A

    def test_bias_toward_option_a(self) -> None:
        card = make_card("L1_body", ["a"], ["b"])
        assert sample_answer(card, "somatic", _Counting(0.6), not_sure_rate=0.0) is Choice.A
        assert sample_answer(card, "decisive", _Counting(0.6), not_sure_rate=0.0) is Choice.B

    def test_draw_counts(self) -> None:
        card = make_card("L1_mood", ["a"], ["b"])
        concrete = _Counting(0.9)
        sample_answer(card, "decisive", concrete)
        mixed = _Counting(0.9)
        sample_answer(card, MIX, mixed)
        assert concrete.draws == 2
        assert mixed.draws == 3

    def test_seeded_sampling_reproducible(self) -> None:
        card = make_card("L1_mood", ["a"], ["b"])
        a, b = SeededRandom(11), SeededRandom(11)
        assert [sample_answer(card, MIX, a) for _ in range(30)] == [
            sample_answer(card, MIX, b) for _ in range(30)
        ]
