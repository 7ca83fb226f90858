"""Session state owned by a single runner."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from deep_session.events import EndedBy, EndedReason, Layer
from deep_session.signal_quality import SignalQuality
from deep_session.tags import GATE_NAMES


class Phase(str, Enum):
    """Runner phases. ENDED is terminal."""

    L1 = "L1"
    L2 = "L2"
    ENDED = "ENDED"


class MicroSource(str, Enum):
    """How the current micro classification was obtained."""

    SELECTED = "selected"
    FALLBACK = "fallback"
    NOT_COMPUTED = "not_computed"


class MicroState(BaseModel):
    """The single (selected, source, reason, top_candidate) micro tuple."""

    model_config = ConfigDict(frozen=True)

    selected: Optional[str] = None
    source: MicroSource = MicroSource.NOT_COMPUTED
    reason: str = "not_computed"
    top_candidate: Optional[str] = None


def micro_violations(selected: object, source: object) -> List[str]:
    """List the micro invariants broken by a (selected, source) pair.

    ``source == selected`` requires a non-empty selection, a missing
    selection requires ``source == not_computed``, and ``not_computed``
    never carries a selection.
    """
    source_value = source.value if isinstance(source, MicroSource) else source
    has_selection = isinstance(selected, str) and selected.strip() != ""
    violations: List[str] = []
    if source_value not in {m.value for m in MicroSource}:
        violations.append(f"micro.source has unknown value {source_value!r}")
    if selected is not None and not has_selection:
        violations.append(f"micro.selected must be a non-empty string or null; got {selected!r}")
    if source_value == MicroSource.SELECTED.value and not has_selection:
        violations.append("micro.source=selected but micro.selected is empty")
    if selected is None and source_value != MicroSource.NOT_COMPUTED.value:
        violations.append(
            f"micro.selected is null but micro.source={source_value!r} "
            f"(must be 'not_computed')"
        )
    if has_selection and source_value == MicroSource.NOT_COMPUTED.value:
        violations.append(
            f"micro.source=not_computed but micro.selected={selected!r}"
        )
    return violations


def empty_gate_map() -> Dict[str, bool]:
    return {gate: False for gate in GATE_NAMES}


class SessionState(BaseModel):
    """Materialized view of one session, mutated only by its runner.

    Asked ids are ordered lists with membership semantics; tag lists are
    append-only; gate maps only ever flip from False to True.
    """

    step: int = 0
    phase: Phase = Phase.L1
    current_card_id: Optional[str] = None
    current_layer: Optional[Layer] = None
    current_card_reason: Optional[str] = None
    asked_l1_ids: List[str] = Field(default_factory=list)
    asked_l2_ids: List[str] = Field(default_factory=list)
    baseline_evidence_tags: List[str] = Field(default_factory=list)
    card_evidence_tags: List[str] = Field(default_factory=list)
    evidence_tags: List[str] = Field(default_factory=list)
    gates_hit_any: Dict[str, bool] = Field(default_factory=empty_gate_map)
    gates_hit_cards_only: Dict[str, bool] = Field(default_factory=empty_gate_map)
    current_macro: Optional[str] = None
    macro_before_cards: Optional[str] = None
    macro_after_l1: Optional[str] = None
    macro_after_l2: Optional[str] = None
    micro: MicroState = Field(default_factory=MicroState)
    ended_by: Optional[EndedBy] = None
    ended_reason: Optional[EndedReason] = None
    l2_plan: Optional[List[str]] = None
    l2_plan_reason: Optional[str] = None
    l2_plan_cursor: int = 0
    gate_first_hit_step: Dict[str, int] = Field(default_factory=dict)
    gate_hit_card_ids: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    coverage_first_picks: List[str] = Field(default_factory=list)
    not_sure_count: int = 0
    signal_quality: Optional[SignalQuality] = None

    @property
    def asked_l1_count(self) -> int:
        return len(self.asked_l1_ids)

    @property
    def asked_l2_count(self) -> int:
        return len(self.asked_l2_ids)

    @property
    def is_ended(self) -> bool:
        return self.phase is Phase.ENDED

    @property
    def final_macro(self) -> str:
        """Latest captured macro snapshot, or ``none``."""
        return (
            self.macro_after_l2
            or self.macro_after_l1
            or self.macro_before_cards
            or "none"
        )
