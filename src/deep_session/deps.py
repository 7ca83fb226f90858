"""Collaborator interfaces injected into the session runner.

Each collaborator is a small protocol so it can be replaced by a stub in
unit tests. Inputs are passed as frozen context objects; outputs are
frozen result objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from deep_session.config import SessionConfig
from deep_session.events import Layer, SessionEvent, utc_now
from deep_session.models import BaselineMetrics, Card, Choice
from deep_session.state import SessionState
from deep_session.tags import AllowListGateEngine, DefaultTagPipeline

# ── Section 1: Decks ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Decks:
    """The L1 and L2 card collections with id lookups."""

    l1: Tuple[Card, ...]
    l2: Tuple[Card, ...]
    _by_layer: Dict[Layer, Dict[str, Card]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        by_layer: Dict[Layer, Dict[str, Card]] = {}
        for layer, cards in ((Layer.L1, self.l1), (Layer.L2, self.l2)):
            index: Dict[str, Card] = {}
            for card in cards:
                if card.id in index:
                    raise ValueError(f"Duplicate card id {card.id!r} in {layer.value} deck")
                index[card.id] = card
            by_layer[layer] = index
        shared = set(by_layer[Layer.L1]) & set(by_layer[Layer.L2])
        if shared:
            raise ValueError(f"Card ids present in both decks: {sorted(shared)}")
        object.__setattr__(self, "_by_layer", by_layer)

    def cards(self, layer: Layer) -> Tuple[Card, ...]:
        return self.l1 if layer is Layer.L1 else self.l2

    def get(self, layer: Layer, card_id: str) -> Optional[Card]:
        return self._by_layer.get(layer, {}).get(card_id)

    def ids(self, layer: Layer) -> Tuple[str, ...]:
        return tuple(card.id for card in self.cards(layer))


# ── Section 2: Contexts and results ──────────────────────────────────────────


@dataclass(frozen=True)
class SelectorContext:
    """Everything an L1 selector may look at."""

    macro_base: Optional[str]
    macro: Optional[str]
    asked_ids: Tuple[str, ...]
    evidence_tags: Tuple[str, ...]
    gates_hit_any: Mapping[str, bool]
    gates_hit_cards_only: Mapping[str, bool]
    flow_config: SessionConfig
    deck: Tuple[Card, ...]
    rng: Callable[[], float]


@dataclass(frozen=True)
class L1Selection:
    card_id: str
    reason: str


@dataclass(frozen=True)
class PlannerContext:
    """Inputs for building the L2 probe plan."""

    top_states: Tuple[str, ...]
    already_asked_ids: Tuple[str, ...]
    evidence_tags: Tuple[str, ...]
    macro: Optional[str]
    flow_config: SessionConfig
    deck: Tuple[Card, ...]
    rng: Callable[[], float]


@dataclass(frozen=True)
class L2Plan:
    plan: Tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class MacroResult:
    macro: str
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MicroResult:
    """Raw micro engine output; the runner normalizes it."""

    selected: Optional[str]
    source: str
    reason: str
    top_candidate: Optional[str] = None


@dataclass(frozen=True)
class NextCard:
    """A card presented to the caller, with its tier and selection reason."""

    layer: Layer
    card: Card
    reason: str


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a commit_answer call."""

    events: Tuple[SessionEvent, ...]
    state: SessionState
    next_card: Optional[NextCard]
    ended: bool


# ── Section 3: Protocols ─────────────────────────────────────────────────────


class RandomSource(Protocol):
    def __call__(self) -> float: ...


class L1Selector(Protocol):
    def __call__(self, ctx: SelectorContext) -> Optional[L1Selection]: ...


class L2Planner(Protocol):
    def __call__(self, ctx: PlannerContext) -> L2Plan: ...


class AnswerTagger(Protocol):
    def __call__(self, card: Card, choice: Choice) -> List[str]: ...


class MacroEngine(Protocol):
    def compute_macro(
        self, baseline_metrics: BaselineMetrics, evidence_tags: Sequence[str]
    ) -> MacroResult: ...


class MicroEngine(Protocol):
    def select_micro(self, macro: str, evidence_tags: Sequence[str]) -> MicroResult: ...


class TagPipeline(Protocol):
    def canonicalize_tags(self, raw_tags: Iterable[Optional[str]]) -> List[str]: ...

    def derive_sig_tags_from_array(self, canonical_tags: Iterable[str]) -> List[str]: ...

    def build_scoring_tags(self, expanded_tags: Sequence[str]) -> List[str]: ...


class GateEngine(Protocol):
    allow_lists: Mapping[str, Sequence[str]]

    def has_gate_match(self, tags: Iterable[str], allow_list: Sequence[str]) -> bool: ...


# ── Section 4: Bundle ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RunnerDeps:
    """All collaborators of one SessionRunner."""

    flow_config: SessionConfig
    decks: Decks
    rng: RandomSource
    l1_selector: L1Selector
    l2_planner: L2Planner
    answer_tagger: AnswerTagger
    macro_engine: MacroEngine
    micro_engine: MicroEngine
    tag_pipeline: TagPipeline = field(default_factory=DefaultTagPipeline)
    gate_engine: GateEngine = field(default_factory=AllowListGateEngine)
    clock: Callable[[], datetime] = utc_now
