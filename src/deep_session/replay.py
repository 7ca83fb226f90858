"""Fold a session event log back into a materialized view.

The runner keeps state and events in lockstep; this reducer proves the
event log alone carries the session outcome. Malformed streams never
raise: problems are recorded as anomalies.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from deep_session.events import (
    ANSWER_COMMITTED,
    CARD_SHOWN,
    GATE_HIT,
    MACRO_UPDATED,
    MICRO_SELECTED,
    SESSION_END,
    SESSION_START,
    GateScope,
    Layer,
    MacroUpdateReason,
    SessionEvent,
)
from deep_session.models import Choice
from deep_session.state import empty_gate_map

logger = logging.getLogger("deep_session.replay")

# ── Section 1: Reducer Output Models ─────────────────────────────────────────


class SessionAnomaly(BaseModel):
    """Non-fatal problem found while folding an event log."""

    model_config = ConfigDict(frozen=True)

    event_index: int = Field(..., ge=0, description="Position in the log")
    event_type: str = Field(..., description="Type of the offending event")
    reason: str = Field(..., description="Human-readable explanation")


class ReducedSessionView(BaseModel):
    """Session outcome derived from events only."""

    model_config = ConfigDict(frozen=True)

    started: bool = False
    ended: bool = False
    asked_l1_ids: Tuple[str, ...] = ()
    asked_l2_ids: Tuple[str, ...] = ()
    pending_card_id: Optional[str] = None
    gates_hit_any: Dict[str, bool] = Field(default_factory=empty_gate_map)
    gates_hit_cards_only: Dict[str, bool] = Field(default_factory=empty_gate_map)
    macro_after_l1: Optional[str] = None
    macro_after_l2: Optional[str] = None
    micro_selected: Optional[str] = None
    micro_source: Optional[str] = None
    not_sure_count: int = 0
    ended_reason: Optional[str] = None
    ended_by: Optional[str] = None
    event_count: int = 0
    anomalies: Tuple[SessionAnomaly, ...] = ()

    @property
    def asked_l1_count(self) -> int:
        return len(self.asked_l1_ids)

    @property
    def asked_l2_count(self) -> int:
        return len(self.asked_l2_ids)


# ── Section 2: Reducer ───────────────────────────────────────────────────────


def reduce_session_events(events: Sequence[SessionEvent]) -> ReducedSessionView:
    """Fold session events, in log order, into a ReducedSessionView.

    Events are never re-sorted. Events before ``session_start`` or after
    ``session_end``, duplicate starts, duplicate card shows and commits
    without a matching shown card are skipped and reported as anomalies.

    Pure function. No I/O.
    """
    if not events:
        return ReducedSessionView()

    started = False
    ended = False
    asked_l1: List[str] = []
    asked_l2: List[str] = []
    pending: Optional[str] = None
    gates_any = empty_gate_map()
    gates_cards = empty_gate_map()
    macro_after_l1: Optional[str] = None
    macro_after_l2: Optional[str] = None
    micro_selected: Optional[str] = None
    micro_source: Optional[str] = None
    not_sure_count = 0
    ended_reason: Optional[str] = None
    ended_by: Optional[str] = None
    anomalies: List[SessionAnomaly] = []

    def _anomaly(index: int, event: SessionEvent, reason: str) -> None:
        anomalies.append(SessionAnomaly(event_index=index, event_type=event.type, reason=reason))

    for index, event in enumerate(events):
        etype = event.type

        if ended:
            _anomaly(index, event, "Event after session_end")
            continue

        if etype == SESSION_START:
            if started:
                _anomaly(index, event, "Duplicate session_start")
            started = True
            continue

        if not started:
            _anomaly(index, event, "Event before session_start")
            continue

        if etype == CARD_SHOWN:
            card_id = event.card_id
            target = asked_l1 if event.layer is Layer.L1 else asked_l2
            if card_id is None or event.layer not in (Layer.L1, Layer.L2):
                _anomaly(index, event, "card_shown without card id or card layer")
                continue
            if card_id in asked_l1 or card_id in asked_l2:
                _anomaly(index, event, f"Duplicate card_shown for {card_id}")
                continue
            target.append(card_id)
            pending = card_id
            continue

        if etype == ANSWER_COMMITTED:
            if pending is None or event.card_id != pending:
                _anomaly(
                    index, event,
                    f"answer_committed for {event.card_id} without matching card_shown",
                )
                continue
            if event.payload.get("choice") == Choice.NOT_SURE.value:
                not_sure_count += 1
            pending = None
            continue

        if etype == GATE_HIT:
            gate = event.payload.get("gate_name")
            scope = event.payload.get("scope")
            if not isinstance(gate, str) or not gate:
                _anomaly(index, event, "gate_hit without gate_name")
            elif scope == GateScope.ANY.value:
                gates_any[gate] = True
            elif scope == GateScope.CARDS_ONLY.value:
                gates_cards[gate] = True
            else:
                _anomaly(index, event, f"Unknown gate scope {scope!r}")
            continue

        if etype == MACRO_UPDATED:
            reason = event.payload.get("reason")
            if reason == MacroUpdateReason.AFTER_L1.value:
                macro_after_l1 = event.payload.get("macro")
            elif reason == MacroUpdateReason.AFTER_L2.value:
                macro_after_l2 = event.payload.get("macro")
            continue

        if etype == MICRO_SELECTED:
            micro_selected = event.payload.get("selected")
            micro_source = event.payload.get("source")
            continue

        if etype == SESSION_END:
            ended = True
            pending = None
            ended_reason = event.payload.get("ended_reason")
            ended_by = event.payload.get("ended_by")
            continue

    for anomaly in anomalies:
        logger.warning(
            "Replay anomaly at #%d (%s): %s",
            anomaly.event_index, anomaly.event_type, anomaly.reason,
        )

    return ReducedSessionView(
        started=started,
        ended=ended,
        asked_l1_ids=tuple(asked_l1),
        asked_l2_ids=tuple(asked_l2),
        pending_card_id=pending,
        gates_hit_any=gates_any,
        gates_hit_cards_only=gates_cards,
        macro_after_l1=macro_after_l1,
        macro_after_l2=macro_after_l2,
        micro_selected=micro_selected,
        micro_source=micro_source,
        not_sure_count=not_sure_count,
        ended_reason=ended_reason,
        ended_by=ended_by,
        event_count=len(events),
        anomalies=tuple(anomalies),
    )
