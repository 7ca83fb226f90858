"""Structural invariants of a golden session projection.

These checks are independent of the domain outcome: they look at event
ordering, duplicate shows, answer matching, termination, phase order,
card caps and the micro tuple. Every check runs; violations are
collected, never short-circuited.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from deep_session.events import (
    ANSWER_COMMITTED,
    CARD_SHOWN,
    SESSION_END,
    SESSION_START,
    EndedReason,
    Layer,
)
from deep_session.golden.projection import derive_counts_from_events
from deep_session.models import GoldenInvariantError
from deep_session.state import Phase, micro_violations

_ENDED_REASONS = frozenset(reason.value for reason in EndedReason)


@dataclass(frozen=True)
class InvariantCheckResult:
    """Outcome of check_golden_invariants."""

    valid: bool
    violations: Tuple[str, ...]


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _shown_key(event: Mapping[str, Any]) -> Tuple[Any, Any]:
    return (event.get("step"), event.get("card_id"))


def _check_boundaries(events: List[Mapping[str, Any]], errors: List[str]) -> None:
    starts = [i for i, e in enumerate(events) if e.get("type") == SESSION_START]
    ends = [i for i, e in enumerate(events) if e.get("type") == SESSION_END]
    if len(starts) != 1:
        errors.append(f"expected exactly one session_start, found {len(starts)}")
    if starts and starts[0] != 0:
        errors.append(f"session_start must be the first event (index={starts[0]})")
    if len(ends) != 1:
        errors.append(f"expected exactly one session_end, found {len(ends)}")
    if ends and ends[-1] != len(events) - 1:
        errors.append(
            f"session_end must be the last event (index={ends[-1]}, len={len(events)})"
        )


def _check_cards(events: List[Mapping[str, Any]], errors: List[str]) -> None:
    shown: Dict[Tuple[Any, Any], int] = {}
    for event in events:
        if event.get("type") == CARD_SHOWN:
            key = _shown_key(event)
            shown[key] = shown.get(key, 0) + 1
    for (step, card_id), count in shown.items():
        if count > 1:
            errors.append(f"duplicate card_shown for step={step} card={card_id} (count={count})")

    for event in events:
        if event.get("type") != ANSWER_COMMITTED:
            continue
        step, card_id = _shown_key(event)
        matches = shown.get((step, card_id), 0)
        if matches != 1:
            errors.append(
                f"answer_committed for step={step} card={card_id} has {matches} "
                f"matching card_shown events (expected 1)"
            )

    seen_l2 = False
    for event in events:
        if event.get("type") != CARD_SHOWN:
            continue
        layer = event.get("layer")
        if layer == Layer.L2.value:
            seen_l2 = True
        elif layer == Layer.L1.value and seen_l2:
            errors.append(
                f"L1 card {event.get('card_id')} shown after the first L2 card "
                f"(event {event.get('i')})"
            )


def _check_final(
    final: Mapping[str, Any],
    config: Mapping[str, Any],
    events: List[Mapping[str, Any]],
    errors: List[str],
) -> None:
    if final.get("phase") != Phase.ENDED.value:
        errors.append(f"final.phase must be ENDED (got {final.get('phase')})")
    reason = final.get("ended_reason")
    if not reason:
        errors.append("final.ended_reason missing")
    elif reason not in _ENDED_REASONS:
        errors.append(f"final.ended_reason {reason!r} is not a known reason")

    l1_count = final.get("asked_l1_count")
    l2_count = final.get("asked_l2_count")
    max_l1 = config.get("max_l1")
    max_l2 = config.get("max_l2")
    if isinstance(l1_count, int) and isinstance(max_l1, int) and l1_count > max_l1:
        errors.append(f"asked_l1_count ({l1_count}) exceeds max_l1 ({max_l1})")
    if isinstance(l2_count, int) and isinstance(max_l2, int) and l2_count > max_l2:
        errors.append(f"asked_l2_count ({l2_count}) exceeds max_l2 ({max_l2})")

    derived = derive_counts_from_events(events)
    if reason == EndedReason.L2_PLAN_COMPLETED.value and derived["asked_l2_count"] == 0:
        errors.append(
            "ended_reason=l2_plan_completed but no L2 card was asked "
            "(an empty plan must end as no_l2_candidates)"
        )
    for key, value in derived.items():
        if final.get(key) != value:
            errors.append(
                f"{key} mismatch: final={final.get(key)}, derived from events={value}"
            )

    micro = _as_mapping(final.get("micro"))
    if not micro:
        errors.append("final.micro missing")
    else:
        errors.extend(micro_violations(micro.get("selected"), micro.get("source")))


def check_golden_invariants(projection: Any) -> InvariantCheckResult:
    """Check every structural invariant of a projection or stored snapshot.

    Never raises; a malformed projection yields violations.
    """
    if not isinstance(projection, Mapping):
        return InvariantCheckResult(valid=False, violations=("snapshot is not an object",))

    errors: List[str] = []
    raw_events = projection.get("events")
    if not isinstance(raw_events, list) or not raw_events:
        errors.append("events missing or empty")
        events: List[Mapping[str, Any]] = []
    else:
        events = [_as_mapping(event) for event in raw_events]
        _check_boundaries(events, errors)
        _check_cards(events, errors)

    final = projection.get("final")
    if not isinstance(final, Mapping):
        errors.append("final missing")
    else:
        _check_final(final, _as_mapping(projection.get("config")), events, errors)

    return InvariantCheckResult(valid=not errors, violations=tuple(errors))


def assert_golden_invariants(projection: Any) -> None:
    """Raise one GoldenInvariantError listing every violation, if any."""
    result = check_golden_invariants(projection)
    if not result.valid:
        raise GoldenInvariantError(result.violations)
