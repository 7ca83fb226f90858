"""Shared pytest fixtures and builders for all tests."""
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import pytest

from deep_session import (
    Card,
    Choice,
    Decks,
    L1Selection,
    L2Plan,
    MacroResult,
    MicroResult,
    NextCard,
    PlannerContext,
    RunnerDeps,
    SeededRandom,
    SelectorContext,
    SessionRunner,
    create_flow_config,
)
from deep_session.golden.projection import build_stable_projection
from deep_session.reference import tag_answer

NEUTRAL_BASELINE = {
    "valence": 5,
    "energy": 5,
    "tension": 5,
    "clarity": 5,
    "control": 5,
    "social": 5,
}

FIXED_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_card(card_id: str, a_tags: Sequence[str], b_tags: Sequence[str], **overrides: Any) -> Card:
    """Build a two-option Card; callers override title, type, cluster or meta."""
    defaults: dict[str, Any] = {
        "id": card_id,
        "title": f"Question {card_id}",
        "type": "choice" if card_id.startswith("L1_") else "probe",
        "cluster": "test",
        "meta": {},
        "options": [
            {"label": "left", "tags": list(a_tags)},
            {"label": "right", "tags": list(b_tags)},
        ],
    }
    defaults.update(overrides)
    return Card(**defaults)


ALL_GATE_TAGS = [
    "sig.valence.neg",
    "sig.arousal.high",
    "sig.agency.low",
    "sig.clarity.low",
    "sig.social.threat",
    "sig.context.work.deadline",
]

STUB_L1 = (
    make_card("L1_val", ["sig.valence.neg"], ["sig.valence.pos"], meta={"gate": "valence"}),
    make_card("L1_aro", ["sig.arousal.high"], ["sig.arousal.low"], meta={"gate": "arousal"}),
    make_card("L1_agy", ["sig.agency.low"], ["sig.agency.high"], meta={"gate": "agency"}),
    make_card("L1_clr", ["sig.clarity.low"], ["sig.clarity.high"], meta={"gate": "clarity"}),
    make_card(
        "L1_load",
        ["sig.context.work.deadline"],
        ["sig.context.work.pressure.high"],
        meta={"gate": "load"},
    ),
    make_card("L1_quiet", ["quiet_a"], ["quiet_b"]),
    make_card("L1_all", ALL_GATE_TAGS, ALL_GATE_TAGS),
)

STUB_L2 = (
    make_card("L2_p1", ["probe_a"], ["probe_b"]),
    make_card("L2_p2", ["probe_a"], ["probe_b"]),
    make_card("L2_p3", ["probe_a"], ["probe_b"]),
    make_card("L2_all", ALL_GATE_TAGS, ALL_GATE_TAGS),
)


def make_decks() -> Decks:
    return Decks(l1=STUB_L1, l2=STUB_L2)


class OrderedL1Selector:
    """Pick the first unasked card, following order when given."""

    def __init__(self, order: Optional[Sequence[str]] = None, reason: str = "ordered") -> None:
        self.order = tuple(order) if order is not None else None
        self.reason = reason
        self.calls: List[SelectorContext] = []

    def __call__(self, ctx: SelectorContext) -> Optional[L1Selection]:
        self.calls.append(ctx)
        ids = self.order if self.order is not None else tuple(card.id for card in ctx.deck)
        for card_id in ids:
            if card_id not in ctx.asked_ids:
                return L1Selection(card_id=card_id, reason=self.reason)
        return None


class ConstantSelector:
    """Always return the same card id; used to provoke contract violations."""

    def __init__(self, card_id: str) -> None:
        self.card_id = card_id

    def __call__(self, ctx: SelectorContext) -> Optional[L1Selection]:
        return L1Selection(card_id=self.card_id, reason="constant")


class FixedPlanner:
    def __init__(self, plan: Sequence[str] = ("L2_p1", "L2_p2", "L2_p3"), reason: str = "fixed") -> None:
        self.plan = tuple(plan)
        self.reason = reason
        self.calls: List[PlannerContext] = []

    def __call__(self, ctx: PlannerContext) -> L2Plan:
        self.calls.append(ctx)
        return L2Plan(plan=self.plan, reason=self.reason)


class StubMacroEngine:
    """``down`` once negative valence evidence is present, else ``mixed``."""

    def __init__(self) -> None:
        self.calls = 0

    def compute_macro(self, baseline_metrics: Any, evidence_tags: Sequence[str]) -> MacroResult:
        self.calls += 1
        macro = "down" if "sig.valence.neg" in evidence_tags else "mixed"
        return MacroResult(macro=macro, meta={})


class StubMicroEngine:
    def __init__(self, result: Optional[MicroResult] = None) -> None:
        self.result = result or MicroResult(
            selected=None, source="not_computed", reason="no_matches"
        )

    def select_micro(self, macro: str, evidence_tags: Sequence[str]) -> MicroResult:
        return self.result


def make_deps(config: Optional[dict] = None, **overrides: Any) -> RunnerDeps:
    """Build RunnerDeps over the stub decks and stub collaborators.

    ``config`` holds flow config overrides; other keyword arguments replace
    individual collaborators.
    """
    defaults: dict[str, Any] = {
        "flow_config": create_flow_config(config or {}),
        "decks": make_decks(),
        "rng": SeededRandom(1),
        "l1_selector": OrderedL1Selector(),
        "l2_planner": FixedPlanner(),
        "answer_tagger": tag_answer,
        "macro_engine": StubMacroEngine(),
        "micro_engine": StubMicroEngine(),
        "clock": lambda: FIXED_TIME,
    }
    defaults.update(overrides)
    return RunnerDeps(**defaults)


def make_runner(
    config: Optional[dict] = None,
    baseline: Optional[dict] = None,
    fixture_tags: Sequence[str] = (),
    **overrides: Any,
) -> SessionRunner:
    """Build and initialize a SessionRunner over stub collaborators."""
    runner = SessionRunner(make_deps(config, **overrides))
    runner.init(baseline or NEUTRAL_BASELINE, fixture_tags)
    return runner


Answer = Union[Choice, str, Callable[[NextCard], Union[Choice, str]]]


def drive(runner: SessionRunner, answer: Answer = Choice.B, cap: int = 64) -> List[Tuple[str, str]]:
    """Answer cards until the session ends; returns (card_id, layer) pairs shown."""
    shown: List[Tuple[str, str]] = []
    for _ in range(cap):
        next_card = runner.get_next_card()
        if next_card is None:
            return shown
        shown.append((next_card.card.id, next_card.layer.value))
        choice = answer(next_card) if callable(answer) else answer
        runner.commit_answer(next_card.card.id, choice)
    raise AssertionError(f"session still open after {cap} cards")


@pytest.fixture
def runner() -> SessionRunner:
    return make_runner()


@pytest.fixture
def neutral_baseline() -> dict:
    return dict(NEUTRAL_BASELINE)


def make_projection(
    answer: Answer = Choice.B,
    config: Optional[dict] = None,
    fixture_id: str = "GS_unit",
    seed: int = 7,
    **overrides: Any,
) -> dict:
    """Drive a stub session to its end and return its stable projection."""
    runner = make_runner(config, **overrides)
    drive(runner, answer)
    return build_stable_projection(
        fixture_id,
        create_flow_config(config or {}),
        seed,
        runner.get_state(),
        runner.get_events(),
        fixture_hash="f" * 40,
    )
