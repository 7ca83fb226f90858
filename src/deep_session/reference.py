"""Reference collaborators and bundled card decks.

These implementations make the engine runnable end-to-end (golden
sessions, simulations, tests). The scoring tables are domain data and can
be swapped by injecting different collaborators into RunnerDeps.
"""

from __future__ import annotations

import importlib.resources
import json
from collections import Counter
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from deep_session.config import SessionConfig
from deep_session.deps import (
    Decks,
    L1Selection,
    L1Selector,
    L2Plan,
    MacroResult,
    MicroResult,
    PlannerContext,
    RandomSource,
    RunnerDeps,
    SelectorContext,
)
from deep_session.models import BaselineMetrics, Card, Choice
from deep_session.tags import CORE_GATES, merge_unique

# ── Section 1: Decks ─────────────────────────────────────────────────────────

_DECK_FILES: Dict[str, str] = {"l1": "l1_deck.json", "l2": "l2_deck.json"}


def load_deck(name: str) -> Tuple[Card, ...]:
    """Load a bundled deck (``"l1"`` or ``"l2"``)."""
    if name not in _DECK_FILES:
        raise ValueError(f"Unknown deck: {name!r}. Available: {sorted(_DECK_FILES)}")
    text = (
        importlib.resources.files("deep_session.data")
        .joinpath(_DECK_FILES[name])
        .read_text(encoding="utf-8")
    )
    return tuple(Card.model_validate(item) for item in json.loads(text))


def load_decks() -> Decks:
    return Decks(l1=load_deck("l1"), l2=load_deck("l2"))


# ── Section 2: Answer tagging ────────────────────────────────────────────────

NOT_SURE_TAGS: Tuple[str, ...] = ("sig.uncertainty.high", "sig.axis.unknown")


def tag_answer(card: Card, choice: Choice) -> List[str]:
    """Raw tags for a committed choice; NS yields the uncertainty sentinel."""
    option = card.option_for(choice)
    if option is None:
        return list(NOT_SURE_TAGS)
    return list(option.tags)


# ── Section 3: L1 selection ──────────────────────────────────────────────────


def _gate_confirmed(card: Card, ctx: SelectorContext) -> bool:
    gate = card.meta.get("gate")
    if gate is None:
        return False
    if gate in CORE_GATES:
        return bool(ctx.gates_hit_cards_only.get(gate, False))
    return bool(ctx.gates_hit_any.get(gate, False))


class CoverageFirstL1Selector:
    """Pick L1 cards that still have something to say about a gate.

    With coverage-first enabled, the first card for each unconfirmed core
    gate is taken in gate order. Afterwards cards whose gate is still open
    are drawn at random, then any remaining card.
    """

    def __call__(self, ctx: SelectorContext) -> Optional[L1Selection]:
        asked = set(ctx.asked_ids)
        remaining = [card for card in ctx.deck if card.id not in asked]
        if not remaining:
            return None

        if ctx.flow_config.coverage_first_enabled:
            for gate in CORE_GATES:
                if ctx.gates_hit_cards_only.get(gate, False):
                    continue
                for card in remaining:
                    if card.meta.get("gate") == gate:
                        return L1Selection(card_id=card.id, reason=f"coverage_first:{gate}")

        open_cards = [card for card in remaining if not _gate_confirmed(card, ctx)]
        pool = open_cards or remaining
        pick = pool[int(ctx.rng() * len(pool))]
        return L1Selection(card_id=pick.id, reason="open_gate" if open_cards else "remaining")


FORCED_REASON = "golden_forced"


def with_forced_order(selector: L1Selector, forced_order: Sequence[str]) -> L1Selector:
    """Wrap selector so the first unasked id of forced_order wins.

    Once every forced id has been asked the wrapped selector takes over.
    """
    order = tuple(forced_order)

    def _select(ctx: SelectorContext) -> Optional[L1Selection]:
        asked = set(ctx.asked_ids)
        for card_id in order:
            if card_id not in asked:
                return L1Selection(card_id=card_id, reason=FORCED_REASON)
        return selector(ctx)

    return _select


# ── Section 4: L2 planning ───────────────────────────────────────────────────

_PAIR_DISCRIMINATORS: Dict[FrozenSet[str], Tuple[str, ...]] = {
    frozenset({"down", "exhausted"}): ("L2_heavy", "L2_numb"),
    frozenset({"overloaded", "pressured"}): ("L2_source", "L2_regulation"),
    frozenset({"blocked", "down"}): ("L2_clarity", "L2_meaning"),
    frozenset({"detached", "down"}): ("L2_numb", "L2_social_pain"),
    frozenset({"exhausted", "overloaded"}): ("L2_regulation", "L2_heavy"),
}

_STATE_PROBES: Dict[str, Tuple[str, ...]] = {
    "down": ("L2_heavy", "L2_positive_moments", "L2_guilt"),
    "exhausted": ("L2_heavy", "L2_numb", "L2_regulation"),
    "overloaded": ("L2_regulation", "L2_source", "L2_clarity"),
    "pressured": ("L2_source", "L2_regulation", "L2_meaning"),
    "blocked": ("L2_clarity", "L2_meaning", "L2_shame"),
    "detached": ("L2_numb", "L2_social_pain", "L2_shame"),
    "up": ("L2_positive_moments", "L2_meaning"),
    "connected": ("L2_social_pain", "L2_positive_moments"),
    "capable": ("L2_meaning", "L2_clarity"),
    "engaged": ("L2_meaning", "L2_regulation"),
    "grounded": ("L2_positive_moments", "L2_regulation"),
    "mixed": ("L2_uncertainty", "L2_clarity", "L2_heavy"),
}

GENERIC_PROBES: Tuple[str, ...] = ("L2_uncertainty", "L2_clarity")


class ProbePlanner:
    """Build an L2 plan from pair discriminators, state probes and a generic pool.

    Ids already asked are left out and the plan is capped at max_plan
    entries. An empty plan is a valid outcome.
    """

    def __init__(self, max_plan: int = 3) -> None:
        if max_plan < 0:
            raise ValueError(f"max_plan must be >= 0; got {max_plan}")
        self.max_plan = max_plan

    def __call__(self, ctx: PlannerContext) -> L2Plan:
        states = list(ctx.top_states)
        discriminators: List[str] = []
        pairs: List[str] = []
        for i, first in enumerate(states):
            for second in states[i + 1:]:
                found = _PAIR_DISCRIMINATORS.get(frozenset({first, second}), ())
                if found:
                    pairs.append("|".join(sorted((first, second))))
                    discriminators.extend(found)
        probes: List[str] = []
        for state_name in states:
            probes.extend(_STATE_PROBES.get(state_name, ()))

        asked = set(ctx.already_asked_ids)
        plan = [
            card_id
            for card_id in merge_unique(discriminators, probes, GENERIC_PROBES)
            if card_id not in asked
        ][: self.max_plan]

        if not plan:
            reason = "no_candidates"
        elif discriminators and plan[0] in discriminators:
            reason = f"discriminate:{pairs[0]}"
        elif probes and plan[0] in probes:
            reason = f"state_probes:{states[0]}"
        else:
            reason = "generic_pool"
        return L2Plan(plan=tuple(plan), reason=reason)


# ── Section 5: Classification engines ────────────────────────────────────────

_AXIS_SIGNALS: Dict[str, Tuple[str, Tuple[str, ...], Tuple[str, ...]]] = {
    # axis: (baseline metric, raising tags, lowering tags)
    "valence": ("valence", ("sig.valence.pos",), ("sig.valence.neg",)),
    "energy": ("energy", ("sig.arousal.high", "sig.fatigue.low"), ("sig.fatigue.high", "sig.arousal.low")),
    "tension": ("tension", ("sig.tension.high",), ("sig.tension.low",)),
    "control": ("control", ("sig.agency.high",), ("sig.agency.low",)),
    "clarity": ("clarity", ("sig.clarity.high",), ("sig.clarity.low",)),
    "social": ("social", ("sig.social.high", "sig.context.social.support"), ("sig.social.threat", "sig.social.low")),
}

_EVIDENCE_WEIGHT = 2
_BASELINE_MIDPOINT = 5


class RuleMacroEngine:
    """Classify a macro state with ordered threshold rules.

    Each axis score is the baseline offset from the scale midpoint plus
    twice the balance of raising and lowering evidence tags.
    """

    def axis_scores(
        self, baseline_metrics: BaselineMetrics, evidence_tags: Sequence[str]
    ) -> Dict[str, int]:
        counts = Counter(evidence_tags)
        scores: Dict[str, int] = {}
        for axis, (metric, raising, lowering) in _AXIS_SIGNALS.items():
            balance = sum(counts[tag] for tag in raising) - sum(counts[tag] for tag in lowering)
            base = getattr(baseline_metrics, metric) - _BASELINE_MIDPOINT
            scores[axis] = base + _EVIDENCE_WEIGHT * balance
        scores["load"] = sum(
            count for tag, count in counts.items() if tag.startswith("sig.context.work.")
            and not tag.endswith(".low")
        )
        return scores

    def compute_macro(
        self, baseline_metrics: BaselineMetrics, evidence_tags: Sequence[str]
    ) -> MacroResult:
        s = self.axis_scores(baseline_metrics, evidence_tags)
        if s["valence"] >= 2:
            if s["social"] >= 2:
                macro = "connected"
            elif s["control"] >= 2:
                macro = "capable"
            elif s["energy"] >= 2:
                macro = "engaged"
            else:
                macro = "up"
        elif s["energy"] <= -3 and s["tension"] <= 1:
            macro = "exhausted"
        elif s["tension"] >= 3 and s["energy"] <= -1:
            macro = "overloaded"
        elif s["load"] >= 1 and s["tension"] >= 1:
            macro = "pressured"
        elif s["control"] <= -3:
            macro = "blocked"
        elif s["social"] <= -3:
            macro = "detached"
        elif s["valence"] <= -2:
            macro = "down"
        elif s["tension"] <= -2 and s["valence"] >= 0:
            macro = "grounded"
        else:
            macro = "mixed"
        return MacroResult(macro=macro, meta={"scores": s})


MICRO_TABLE: Dict[str, Tuple[Tuple[str, FrozenSet[str]], ...]] = {
    "down": (
        ("down.sad_heavy", frozenset({"sig.valence.neg", "sig.fatigue.high"})),
        ("down.lonely", frozenset({"sig.social.threat", "sig.social.low", "sig.trigger.rejection"})),
        ("down.guilty", frozenset({"sig.guilt.high", "sig.self_worth.low"})),
    ),
    "exhausted": (
        ("exhausted.drained", frozenset({"sig.fatigue.high", "sig.arousal.low"})),
        ("exhausted.numb", frozenset({"sig.numb.high", "sig.arousal.low"})),
    ),
    "overloaded": (
        ("overloaded.wired", frozenset({"sig.tension.high", "sig.arousal.high"})),
        ("overloaded.scattered", frozenset({"sig.clarity.low", "sig.rumination.high"})),
    ),
    "pressured": (
        ("pressured.cornered", frozenset({"sig.tension.high", "sig.agency.low"})),
        ("pressured.driven", frozenset({"sig.agency.high", "sig.arousal.high"})),
    ),
    "blocked": (
        ("blocked.stuck", frozenset({"sig.agency.low", "sig.clarity.low"})),
        ("blocked.ashamed", frozenset({"sig.shame.high", "sig.self_worth.low"})),
    ),
    "detached": (
        ("detached.flat", frozenset({"sig.numb.high", "sig.arousal.low"})),
        ("detached.withdrawn", frozenset({"sig.social.low", "sig.social.threat"})),
    ),
    "up": (
        ("up.light", frozenset({"sig.valence.pos", "sig.tension.low"})),
        ("up.energized", frozenset({"sig.valence.pos", "sig.arousal.high"})),
    ),
    "connected": (("connected.supported", frozenset({"sig.social.high", "sig.valence.pos"})),),
    "capable": (("capable.in_control", frozenset({"sig.agency.high", "sig.clarity.high"})),),
    "engaged": (("engaged.focused", frozenset({"sig.arousal.high", "sig.meaning.high"})),),
    "grounded": (("grounded.calm", frozenset({"sig.tension.low", "sig.clarity.high"})),),
    "mixed": (("mixed.unsure", frozenset({"sig.uncertainty.high", "sig.clarity.low"})),),
}


class TableMicroEngine:
    """Pick the micro state whose required tags are best covered.

    A micro is selected when its coverage reaches threshold. With plenty
    of evidence but weaker coverage the best partial match is returned as a
    fallback; otherwise nothing is selected.
    """

    def __init__(
        self,
        table: Optional[Dict[str, Tuple[Tuple[str, FrozenSet[str]], ...]]] = None,
        threshold: float = 0.5,
        fallback_min_tags: int = 8,
    ) -> None:
        self.table = table if table is not None else MICRO_TABLE
        self.threshold = threshold
        self.fallback_min_tags = fallback_min_tags

    def select_micro(self, macro: str, evidence_tags: Sequence[str]) -> MicroResult:
        micros = self.table.get(macro, ())
        if not micros:
            return MicroResult(selected=None, source="not_computed", reason="no_micros")
        tags = set(evidence_tags)
        if not tags:
            return MicroResult(selected=None, source="not_computed", reason="no_evidence")

        best_key: Optional[str] = None
        best_score = 0.0
        for key, required in micros:
            score = len(required & tags) / len(required)
            if score > best_score:
                best_key, best_score = key, score

        if best_key is None:
            return MicroResult(selected=None, source="not_computed", reason="no_matches")
        if best_score >= self.threshold:
            return MicroResult(
                selected=best_key, source="selected", reason="matched", top_candidate=best_key
            )
        if len(tags) >= self.fallback_min_tags:
            return MicroResult(
                selected=best_key, source="fallback", reason="weak_match_fallback",
                top_candidate=best_key,
            )
        return MicroResult(
            selected=None, source="not_computed", reason="below_threshold",
            top_candidate=best_key,
        )


# ── Section 6: Wiring ────────────────────────────────────────────────────────


def build_runner_deps(
    flow_config: SessionConfig,
    rng: RandomSource,
    *,
    decks: Optional[Decks] = None,
    forced_l1_order: Optional[Sequence[str]] = None,
    l2_plan_size: int = 3,
) -> RunnerDeps:
    """Assemble RunnerDeps from the reference collaborators."""
    l1_selector: L1Selector = CoverageFirstL1Selector()
    if forced_l1_order:
        l1_selector = with_forced_order(l1_selector, forced_l1_order)
    return RunnerDeps(
        flow_config=flow_config,
        decks=decks if decks is not None else load_decks(),
        rng=rng,
        l1_selector=l1_selector,
        l2_planner=ProbePlanner(max_plan=l2_plan_size),
        answer_tagger=tag_answer,
        macro_engine=RuleMacroEngine(),
        micro_engine=TableMicroEngine(),
    )
