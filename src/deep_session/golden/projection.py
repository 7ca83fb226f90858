"""Stable projection of a finished session run.

The projection is the comparison-ready rendering of a run: events keep
their emission order, volatile fields (event ids, timestamps) are
stripped, tag lists are de-duplicated and sorted, and the asked and
not-sure counts are recomputed from the event stream instead of being
read from state.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from deep_session.config import SessionConfig
from deep_session.events import (
    ANSWER_COMMITTED,
    CARD_SHOWN,
    EXPECTED_MACRO_COMPUTED,
    GATE_HIT,
    MACRO_UPDATED,
    MICRO_SELECTED,
    SESSION_END,
    Layer,
    SessionEvent,
)
from deep_session.golden.hashing import hash_config
from deep_session.models import Choice, ContractViolationError
from deep_session.state import SessionState

# Bumped whenever the projection shape changes; stored snapshots with a
# different version are stale.
GOLDEN_SNAPSHOT_VERSION: str = "1.2.0"

REQUIRED_CONFIG_KEYS = (
    "max_l1",
    "max_l2",
    "min_l1",
    "min_l2",
    "stop_on_gates",
    "not_sure_rate",
    "profile",
    "seed",
)


def _uniq_sorted(values: Optional[Iterable[Any]]) -> List[str]:
    return sorted({str(v) for v in (values or ()) if v})


# ── Section 1: Event digest ──────────────────────────────────────────────────


def _digest_one(index: int, event: SessionEvent) -> Dict[str, Any]:
    payload = event.payload
    item: Dict[str, Any] = {
        "i": index,
        "type": event.type,
        "step": event.step,
        "layer": event.layer.value if event.layer is not None else None,
        "card_id": event.card_id,
        "choice": payload.get("choice") if event.type == ANSWER_COMMITTED else None,
        "tags": _uniq_sorted(payload.get("tags")),
        "gate": payload.get("gate_name") if event.type == GATE_HIT else None,
        "scope": payload.get("scope") if event.type == GATE_HIT else None,
        "macro": payload.get("macro") if event.type == MACRO_UPDATED else None,
        "micro": None,
        "expected_macro": (
            payload.get("expected_macro") if event.type == EXPECTED_MACRO_COMPUTED else None
        ),
        "ended_reason": payload.get("ended_reason") if event.type == SESSION_END else None,
        "reason": payload.get("reason") if event.type == CARD_SHOWN else None,
    }
    if event.type == MICRO_SELECTED:
        item["micro"] = {
            "selected": payload.get("selected"),
            "source": payload.get("source"),
            "reason": payload.get("reason"),
            "top_candidate": payload.get("top_candidate"),
        }
    if not item["tags"]:
        del item["tags"]
    return {key: value for key, value in item.items() if value is not None}


def stable_event_digest(events: Sequence[SessionEvent]) -> List[Dict[str, Any]]:
    """Normalize events without reordering them.

    Each digest entry keeps only stable fields; ``None`` fields and empty
    tag lists are dropped.
    """
    return [_digest_one(index, event) for index, event in enumerate(events)]


def derive_counts_from_events(events: Sequence[Mapping[str, Any]]) -> Dict[str, int]:
    """Recompute asked and not-sure counts from an event digest.

    Asked counts are the distinct ``card_shown`` ids per layer.
    """
    l1_ids = set()
    l2_ids = set()
    not_sure = 0
    for event in events:
        if not isinstance(event, Mapping):
            continue
        etype = event.get("type")
        if etype == CARD_SHOWN and event.get("card_id"):
            if event.get("layer") == Layer.L1.value:
                l1_ids.add(event["card_id"])
            elif event.get("layer") == Layer.L2.value:
                l2_ids.add(event["card_id"])
        elif etype == ANSWER_COMMITTED and event.get("choice") == Choice.NOT_SURE.value:
            not_sure += 1
    return {
        "asked_l1_count": len(l1_ids),
        "asked_l2_count": len(l2_ids),
        "not_sure_count": not_sure,
    }


def count_mismatches(state: SessionState, derived: Mapping[str, int]) -> List[str]:
    """Compare the runner's cached counters with event-derived counts."""
    cached = {
        "asked_l1_count": state.asked_l1_count,
        "asked_l2_count": state.asked_l2_count,
        "not_sure_count": state.not_sure_count,
    }
    return [
        f"{key} mismatch: state={cached[key]}, derived from events={derived.get(key)}"
        for key in sorted(cached)
        if cached[key] != derived.get(key)
    ]


# ── Section 2: Projection ────────────────────────────────────────────────────


def build_config_block(
    config: SessionConfig, seed: int, fixture_hash: str
) -> Dict[str, Any]:
    """Effective config plus seed, fixture hash, version and config hash."""
    block: Dict[str, Any] = config.model_dump(mode="json")
    block["seed"] = seed
    block["config_hash"] = hash_config(block)
    block["fixture_hash"] = fixture_hash
    block["snapshot_version"] = GOLDEN_SNAPSHOT_VERSION
    return block


def build_stable_projection(
    fixture_id: str,
    config: SessionConfig,
    seed: int,
    state: SessionState,
    events: Sequence[SessionEvent],
    fixture_hash: str = "",
) -> Dict[str, Any]:
    """Render a finished run as a JSON-ready, deterministic dict.

    Raises:
        ContractViolationError: If the run ended without a signal-quality
            summary.
    """
    quality = state.signal_quality
    if quality is None:
        raise ContractViolationError(
            "Finished run has no signal quality; the session did not end through the runner"
        )

    digest = stable_event_digest(events)
    derived = derive_counts_from_events(digest)

    final: Dict[str, Any] = {
        "phase": state.phase.value,
        "ended_reason": state.ended_reason.value if state.ended_reason else None,
        "ended_by": state.ended_by.value if state.ended_by else None,
        "asked_l1_count": derived["asked_l1_count"],
        "asked_l2_count": derived["asked_l2_count"],
        "not_sure_count": derived["not_sure_count"],
        "macro_before_cards": state.macro_before_cards,
        "macro_after_l1": state.macro_after_l1,
        "macro_after_l2": state.macro_after_l2,
        "micro": {
            "selected": state.micro.selected,
            "source": state.micro.source.value,
            "reason": state.micro.reason,
            "top_candidate": state.micro.top_candidate,
        },
        "gates_hit_any": {k: bool(v) for k, v in state.gates_hit_any.items()},
        "gates_hit_cards_only": {k: bool(v) for k, v in state.gates_hit_cards_only.items()},
        "baseline_evidence_tags": _uniq_sorted(state.baseline_evidence_tags),
        "card_evidence_tags": _uniq_sorted(state.card_evidence_tags),
        "evidence_tags": _uniq_sorted(state.evidence_tags),
    }
    final.update(quality.model_dump(mode="json"))

    return {
        "fixture": {"id": fixture_id, "seed": seed},
        "config": build_config_block(config, seed, fixture_hash),
        "final": final,
        "coverage": {
            "first_picks": list(state.coverage_first_picks),
            "gate_first_hit_step": dict(sorted(state.gate_first_hit_step.items())),
        },
        "events": digest,
    }
