"""Signal-quality summary computed when a session ends."""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from deep_session.tags import DefaultTagPipeline, merge_unique

if TYPE_CHECKING:
    from deep_session.deps import TagPipeline

SIGNAL_WEIGHTS: Dict[str, int] = {
    "sig.valence.pos": 2,
    "sig.valence.neg": -2,
    "sig.arousal.high": 1,
    "sig.fatigue.high": -1,
    "sig.tension.high": -1,
    "sig.tension.low": 1,
    "sig.clarity.high": 1,
    "sig.clarity.low": -1,
    "sig.agency.high": 1,
    "sig.agency.low": -1,
}

DOWN_LIKE_MACROS: FrozenSet[str] = frozenset({"down", "overloaded", "blocked", "pressured"})
UP_LIKE_MACROS: FrozenSet[str] = frozenset({"up", "connected", "capable", "engaged", "grounded"})

INTENTIONAL_CONTRADICTION_TAG: str = "intentional_contradiction"

_TOP_SIGNAL_LIMIT = 5
_MIN_SCORING_TAGS = 3
_DECISIVE_SCORE = 2
_OVERRIDING_SCORE = 5


class SignalQuality(BaseModel):
    """How strongly the accumulated evidence points in one direction."""

    model_config = ConfigDict(frozen=True)

    expected_macro: str = Field(..., description="'up', 'down', 'exhausted' or 'mixed'")
    signal_score: int = Field(..., description="Signed sum of signal weights")
    scoring_tag_count: int = Field(..., ge=0, description="Distinct scoring tags")
    axis_tag_count: int = Field(..., ge=0, description="Evidence tags under sig.axis.")
    eligible_for_contradiction: bool = Field(
        ..., description="Whether the evidence is strong enough to contradict"
    )
    top_signals: List[str] = Field(
        default_factory=list, description="Up to five heaviest signal tags"
    )
    has_contradiction: bool = Field(
        ..., description="Expected and final macro point in opposite directions"
    )
    final_macro: str = Field(..., description="Macro the session ended with")


def compute_signal_quality(
    evidence_tags: Sequence[str],
    baseline_evidence_tags: Iterable[str],
    fixture_tags: Iterable[str],
    final_macro: str,
    *,
    pipeline: Optional[TagPipeline] = None,
) -> SignalQuality:
    """Summarize final evidence into an expected macro and a contradiction flag.

    Pure function of its inputs. Evidence is read as a set; the scored
    signals are the ``sig.*`` scoring tags plus the signals derived from
    ``l1_*`` scoring tags. Scoring tags come from ``pipeline``, the same
    one the session ran with; the default pipeline is used when omitted.
    """
    if pipeline is None:
        pipeline = DefaultTagPipeline()
    scoring_tags = pipeline.build_scoring_tags(merge_unique(evidence_tags))
    scored = merge_unique(
        (tag for tag in scoring_tags if tag.startswith("sig.")),
        pipeline.derive_sig_tags_from_array(scoring_tags),
    )

    signal_score = 0
    weights: Dict[str, int] = {}
    for tag in scored:
        weight = SIGNAL_WEIGHTS.get(tag)
        if weight is None:
            continue
        signal_score += weight
        weights[tag] = weights.get(tag, 0) + abs(weight)

    if signal_score >= _DECISIVE_SCORE:
        expected_macro = "up"
    elif signal_score <= -_DECISIVE_SCORE:
        fatigue = weights.get("sig.fatigue.high", 0)
        tension = weights.get("sig.tension.high", 0)
        expected_macro = "exhausted" if fatigue > tension else "down"
    else:
        expected_macro = "mixed"

    baseline = set(baseline_evidence_tags)
    has_very_low_baseline = "sig.valence.neg" in baseline or (
        "sig.tension.high" in baseline and "sig.fatigue.high" in baseline
    )
    intentional = INTENTIONAL_CONTRADICTION_TAG in set(fixture_tags)
    eligible = (
        abs(signal_score) >= _DECISIVE_SCORE
        and len(scoring_tags) >= _MIN_SCORING_TAGS
        and (intentional or abs(signal_score) >= _OVERRIDING_SCORE or not has_very_low_baseline)
    )

    # sorted() is stable, so equal weights keep first-seen order
    top_signals: List[str] = [
        tag for tag, _ in sorted(weights.items(), key=lambda item: -item[1])
    ][:_TOP_SIGNAL_LIMIT]

    points_down = final_macro in DOWN_LIKE_MACROS or final_macro == "exhausted"
    has_contradiction = eligible and (
        (expected_macro == "up" and points_down)
        or (expected_macro in ("down", "exhausted") and final_macro in UP_LIKE_MACROS)
    )

    return SignalQuality(
        expected_macro=expected_macro,
        signal_score=signal_score,
        scoring_tag_count=len(scoring_tags),
        axis_tag_count=sum(1 for tag in evidence_tags if tag.startswith("sig.axis.")),
        eligible_for_contradiction=eligible,
        top_signals=top_signals,
        has_contradiction=has_contradiction,
        final_macro=final_macro,
    )
