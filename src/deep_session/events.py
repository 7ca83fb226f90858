"""Session event log contracts.

Defines event type constants, enums, payload models, the session event
envelope, and the factory used by the runner to append events.
Events are append-only and keep their emission order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from ulid import ULID

from deep_session.models import BaselineMetrics, Choice
from deep_session.signal_quality import SignalQuality

# ── Section 1: Constants ─────────────────────────────────────────────────────

SESSION_START: str = "session_start"
BASELINE_INJECTED: str = "baseline_injected"
CARD_SHOWN: str = "card_shown"
ANSWER_COMMITTED: str = "answer_committed"
EVIDENCE_ADDED: str = "evidence_added"
GATE_HIT: str = "gate_hit"
MACRO_UPDATED: str = "macro_updated"
MICRO_SELECTED: str = "micro_selected"
EXPECTED_MACRO_COMPUTED: str = "expected_macro_computed"
SESSION_END: str = "session_end"

SESSION_EVENT_TYPES: FrozenSet[str] = frozenset({
    SESSION_START,
    BASELINE_INJECTED,
    CARD_SHOWN,
    ANSWER_COMMITTED,
    EVIDENCE_ADDED,
    GATE_HIT,
    MACRO_UPDATED,
    MICRO_SELECTED,
    EXPECTED_MACRO_COMPUTED,
    SESSION_END,
})

# ── Section 2: Enums ─────────────────────────────────────────────────────────


class Layer(str, Enum):
    """Origin of an event: a card tier or the baseline."""

    L1 = "L1"
    L2 = "L2"
    BASELINE = "BASELINE"


class EndedReason(str, Enum):
    """Terminal outcomes of a session. These are results, not errors."""

    GATES_CLOSED = "gates_closed"
    MAX_L2 = "max_l2"
    NO_L2_CANDIDATES = "no_l2_candidates"
    L2_PLAN_COMPLETED = "l2_plan_completed"
    MAX_STEPS_REACHED = "max_steps_reached"


class EndedBy(str, Enum):
    """Card tier that was active when the session ended."""

    L1 = "l1"
    L2 = "l2"


class GateScope(str, Enum):
    """Which gate map a gate_hit event refers to."""

    ANY = "any"
    CARDS_ONLY = "cards_only"


class EvidenceSource(str, Enum):
    """Where a batch of evidence tags came from."""

    BASELINE = "baseline"
    L1 = "l1"
    L2 = "l2"
    NOT_SURE = "not_sure"


class MacroUpdateReason(str, Enum):
    AFTER_L1 = "after_l1"
    AFTER_L2 = "after_l2"


# ── Section 3: Payload Models ────────────────────────────────────────────────


class SessionStartPayload(BaseModel):
    """Payload for session_start."""

    model_config = ConfigDict(frozen=True)

    baseline_metrics: BaselineMetrics = Field(..., description="Baseline profile")
    fixture_tags: List[str] = Field(
        default_factory=list, description="Caller-supplied session tags"
    )


class BaselineInjectedPayload(BaseModel):
    """Payload for baseline_injected."""

    model_config = ConfigDict(frozen=True)

    tags: List[str] = Field(..., description="Tags derived from baseline metrics")
    count: int = Field(..., ge=0, description="Number of tags")


class CardShownPayload(BaseModel):
    """Payload for card_shown."""

    model_config = ConfigDict(frozen=True)

    card_id: str = Field(..., min_length=1, description="Card being shown")
    card_title: str = Field(..., description="Question text")
    card_type: str = Field(..., description="Card kind")
    reason: str = Field(..., min_length=1, description="Why the selector chose it")


class AnswerCommittedPayload(BaseModel):
    """Payload for answer_committed."""

    model_config = ConfigDict(frozen=True)

    choice: Choice = Field(..., description="A, B or NS")


class EvidenceAddedPayload(BaseModel):
    """Payload for evidence_added."""

    model_config = ConfigDict(frozen=True)

    tags: List[str] = Field(..., description="Canonical plus derived tags added")
    source: EvidenceSource = Field(..., description="Origin of the evidence")
    count: int = Field(..., ge=0, description="Number of tags added")


class GateHitPayload(BaseModel):
    """Payload for gate_hit; emitted once per gate and scope."""

    model_config = ConfigDict(frozen=True)

    gate_name: str = Field(..., min_length=1, description="Gate that opened")
    scope: GateScope = Field(..., description="Gate map that changed")


class MacroUpdatedPayload(BaseModel):
    """Payload for macro_updated."""

    model_config = ConfigDict(frozen=True)

    macro: str = Field(..., min_length=1, description="New macro classification")
    previous: Optional[str] = Field(None, description="Snapshot it replaces")
    reason: MacroUpdateReason = Field(..., description="Capture point")


class MicroSelectedPayload(BaseModel):
    """Payload for micro_selected; mirrors the state micro tuple."""

    model_config = ConfigDict(frozen=True)

    selected: Optional[str] = Field(None, description="Micro key or None")
    source: str = Field(..., min_length=1, description="selected, fallback or not_computed")
    reason: str = Field(..., description="Engine reason")
    top_candidate: Optional[str] = Field(None, description="Best candidate seen")


class ExpectedMacroComputedPayload(SignalQuality):
    """Payload for expected_macro_computed.

    Carries the full signal-quality summary computed just before the end.
    """

    pass


class SessionEndPayload(BaseModel):
    """Payload for session_end."""

    model_config = ConfigDict(frozen=True)

    ended_by: EndedBy = Field(..., description="Tier active at the end")
    ended_reason: EndedReason = Field(..., description="Terminal outcome")
    asked_l1_count: int = Field(..., ge=0)
    asked_l2_count: int = Field(..., ge=0)
    evidence_tags_count: int = Field(..., ge=0)
    gates_hit_count: int = Field(..., ge=0, description="Gates set in gates_hit_any")


# ── Section 4: Event Envelope ────────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionEvent(BaseModel):
    """Immutable entry of the session event log."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(
        default_factory=lambda: str(ULID()),
        min_length=26,
        max_length=26,
        description="ULID; unique per event, never compared or hashed",
    )
    type: str = Field(..., min_length=1, description="One of SESSION_EVENT_TYPES")
    step: int = Field(..., ge=0, description="Runner step when the event was emitted")
    layer: Optional[Layer] = Field(None, description="Card tier or BASELINE")
    card_id: Optional[str] = Field(None, description="Card the event refers to")
    payload: Dict[str, Any] = Field(
        default_factory=dict, description="Dumped payload model"
    )
    timestamp: datetime = Field(
        ..., description="Wall-clock time (telemetry only, not used for ordering)"
    )

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        if v not in SESSION_EVENT_TYPES:
            raise ValueError(
                f"Unknown session event type: {v!r}. "
                f"Known types: {sorted(SESSION_EVENT_TYPES)}"
            )
        return v

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"SessionEvent(type={self.type}, step={self.step}, "
            f"layer={self.layer.value if self.layer else None}, "
            f"card={self.card_id})"
        )


def create_event(
    event_type: str,
    step: int,
    payload: BaseModel,
    *,
    layer: Optional[Layer] = None,
    card_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> SessionEvent:
    """Build a SessionEvent from a typed payload model."""
    return SessionEvent(
        type=event_type,
        step=step,
        layer=layer,
        card_id=card_id,
        payload=payload.model_dump(mode="json"),
        timestamp=timestamp if timestamp is not None else utc_now(),
    )
