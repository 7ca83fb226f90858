"""Per-fixture outcome expectations."""
from __future__ import annotations

from typing import Any, List, Mapping

from deep_session.events import EndedReason
from deep_session.golden.fixtures import FixtureExpectations
from deep_session.state import MicroSource


def check_expectations(expect: FixtureExpectations, projection: Mapping[str, Any]) -> List[str]:
    """Return the expectation violations of a projection (empty when met)."""
    final = projection.get("final")
    if not isinstance(final, Mapping):
        return ["final missing"]

    errors: List[str] = []
    reason = final.get("ended_reason")
    if expect.allowed_ended_reasons is not None and reason not in expect.allowed_ended_reasons:
        errors.append(
            f"ended_reason must be one of {', '.join(expect.allowed_ended_reasons)}, got {reason}"
        )
    if (
        expect.forbid_max_steps_reached
        and reason == EndedReason.MAX_STEPS_REACHED.value
        and EndedReason.MAX_STEPS_REACHED.value not in (expect.allowed_ended_reasons or ())
    ):
        errors.append("ended_reason must not be max_steps_reached")
    if expect.ended_reason is not None and reason != expect.ended_reason:
        errors.append(f"expected ended_reason={expect.ended_reason}, got {reason}")
    if expect.ended_by is not None and final.get("ended_by") != expect.ended_by:
        errors.append(f"expected ended_by={expect.ended_by}, got {final.get('ended_by')}")

    l1_count = final.get("asked_l1_count", 0)
    l2_count = final.get("asked_l2_count", 0)
    if expect.max_asked_l1 is not None and l1_count > expect.max_asked_l1:
        errors.append(f"asked_l1_count ({l1_count}) exceeds {expect.max_asked_l1}")
    if expect.max_asked_l2 is not None and l2_count > expect.max_asked_l2:
        errors.append(f"asked_l2_count ({l2_count}) exceeds {expect.max_asked_l2}")
    if expect.asked_l2_count is not None and l2_count != expect.asked_l2_count:
        errors.append(f"expected asked_l2_count={expect.asked_l2_count}, got {l2_count}")
    if (
        expect.min_not_sure_count is not None
        and final.get("not_sure_count", 0) < expect.min_not_sure_count
    ):
        errors.append(
            f"not_sure_count ({final.get('not_sure_count', 0)}) below "
            f"{expect.min_not_sure_count}"
        )

    if expect.micro_selected_not_null:
        micro = final.get("micro")
        micro = micro if isinstance(micro, Mapping) else {}
        selected = micro.get("selected")
        if not isinstance(selected, str) or not selected:
            errors.append(f"micro.selected must be a non-empty string, got {selected!r}")
        if micro.get("source") != MicroSource.SELECTED.value:
            errors.append(f"micro.source must be 'selected', got {micro.get('source')!r}")
    return errors
