"""Tag pipeline and gate allow-lists.

Raw answer tags go through three stages before they count as evidence:

1. canonicalization (lowercase, alias resolution, token normalization)
2. signal derivation (``l1_*`` tags expand to ``sig.*`` tags)
3. scoring filter (contextual ``sig.context.*`` tags are dropped)

Gates are evaluated against allow-lists of exact tags and ``prefix.``
patterns.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from deep_session.models import BaselineMetrics

# ── Section 1: Constants ─────────────────────────────────────────────────────

GATE_NAMES: Tuple[str, ...] = ("valence", "arousal", "agency", "clarity", "social", "load")

# Core gates must be confirmed by card answers; support gates may be
# satisfied by baseline tags.
CORE_GATES: Tuple[str, ...] = ("valence", "arousal", "agency", "clarity")
SUPPORT_GATES: Tuple[str, ...] = ("load", "social")

GATE_ALLOW_LISTS: Dict[str, Tuple[str, ...]] = {
    "valence": (
        "sig.valence.neg",
        "sig.valence.pos",
        "sig.valence.neutral",
        "l1_mood_neg",
        "l1_mood_pos",
    ),
    "arousal": (
        "sig.arousal.high",
        "sig.arousal.mid",
        "sig.arousal.low",
        "sig.fatigue.high",
        "sig.fatigue.mid",
        "sig.fatigue.low",
        "l1_energy_low",
        "l1_energy_high",
    ),
    "agency": (
        "sig.agency.low",
        "sig.agency.high",
        "sig.agency.mid",
        "l1_control_low",
        "l1_control_high",
        "l1_worth_low",
        "l1_worth_high",
    ),
    "clarity": (
        "sig.clarity.low",
        "sig.clarity.high",
        "sig.clarity.mid",
        "l1_clarity_low",
        "l1_clarity_high",
        "l1_expect_low",
        "l1_expect_ok",
    ),
    "social": (
        "sig.social.threat",
        "sig.social.high",
        "sig.social.low",
        "sig.social.mid",
        "sig.context.social.support",
        "sig.trigger.rejection",
        "sig.trigger.conflict",
        "l1_social_threat",
        "l1_social_support",
    ),
    "load": (
        "sig.context.work.deadline",
        "sig.context.work.overcommit",
        "sig.context.work.pressure.high",
        "l1_pressure_high",
    ),
}

AXIS_TAG_PREFIXES: Tuple[str, ...] = (
    "sig.valence.",
    "sig.arousal.",
    "sig.tension.",
    "sig.agency.",
    "sig.clarity.",
    "sig.fatigue.",
    "sig.social.",
)

CONTEXT_TAG_PREFIX: str = "sig.context."

SIG_TAG_ALIASES: Dict[str, str] = {
    "sig.safety.low": "sig.tension.high",
    "sig.safety.high": "sig.tension.low",
}

_L1_DERIVATIONS: Dict[str, Tuple[str, ...]] = {
    "l1_mood_neg": ("sig.valence.neg",),
    "l1_mood_pos": ("sig.valence.pos",),
    "l1_energy_low": ("sig.fatigue.high", "sig.arousal.low"),
    "l1_energy_high": ("sig.fatigue.low", "sig.arousal.high"),
    "l1_control_low": ("sig.agency.low",),
    "l1_control_high": ("sig.agency.high",),
    "l1_clarity_low": ("sig.clarity.low",),
    "l1_clarity_high": ("sig.clarity.high",),
    "l1_expect_low": ("sig.clarity.low",),
    "l1_expect_ok": ("sig.clarity.high",),
    "l1_social_threat": ("sig.social.threat",),
    "l1_social_support": ("sig.social.high",),
    "l1_pressure_high": ("sig.context.work.pressure.high",),
    "l1_worth_low": ("sig.self_worth.low", "sig.agency.low"),
    "l1_worth_high": ("sig.self_worth.high", "sig.agency.high"),
}

_SEPARATORS_RE = re.compile(r"[/\s\-]+")
_PUNCTUATION_RE = re.compile(r"[?,!]+")

# ── Section 2: Canonicalization and derivation ───────────────────────────────


def merge_unique(*sequences: Iterable[str]) -> List[str]:
    """Concatenate sequences, keeping the first occurrence of each tag."""
    seen: set[str] = set()
    merged: List[str] = []
    for sequence in sequences:
        for tag in sequence:
            if tag not in seen:
                seen.add(tag)
                merged.append(tag)
    return merged


def normalize_token(value: str) -> str:
    """Lowercase, trim, join separators with ``_`` and drop punctuation.

    Dots survive so ``sig.*`` style tags keep their structure.
    """
    lowered = value.lower().strip()
    return _PUNCTUATION_RE.sub("", _SEPARATORS_RE.sub("_", lowered))


def canonicalize_tag(
    tag: Optional[str],
    aliases: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Return the canonical form of a raw tag, or None for empty input."""
    if tag is None:
        return None
    raw = str(tag).strip()
    if not raw:
        return None
    lowered = raw.lower()
    if lowered.startswith("sig."):
        return SIG_TAG_ALIASES.get(lowered, lowered)
    if lowered.startswith("l1_"):
        return lowered
    normalized = normalize_token(raw)
    if aliases and normalized in aliases:
        return aliases[normalized]
    return normalized or None


def canonicalize_tags(
    raw_tags: Iterable[Optional[str]],
    aliases: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """Canonicalize and de-duplicate raw tags, preserving first-seen order."""
    canonical = (canonicalize_tag(tag, aliases) for tag in raw_tags)
    return merge_unique(tag for tag in canonical if tag)


def derive_sig_tags(canonical_tag: str) -> List[str]:
    """Signal tags implied by a single canonical ``l1_*`` tag."""
    return list(_L1_DERIVATIONS.get(canonical_tag.lower(), ()))


def derive_sig_tags_from_array(canonical_tags: Iterable[str]) -> List[str]:
    """Ordered, de-duplicated signal tags derived from the ``l1_*`` inputs."""
    return merge_unique(
        *(derive_sig_tags(tag) for tag in canonical_tags if tag.startswith("l1_"))
    )


def is_axis_tag(tag: str) -> bool:
    return tag.startswith(AXIS_TAG_PREFIXES)


def build_scoring_tags(
    expanded_tags: Sequence[str],
    exclude_context: bool = True,
) -> List[str]:
    """Filter evidence down to the tags used for classification.

    When the filter leaves nothing, the first two sorted unique axis tags
    of the input are kept so a session never scores on an empty set while
    axis evidence exists.
    """
    filtered = list(expanded_tags)
    if exclude_context:
        filtered = [tag for tag in filtered if not tag.startswith(CONTEXT_TAG_PREFIX)]
    if not filtered:
        axis = sorted({tag for tag in expanded_tags if is_axis_tag(tag)})
        return axis[:2]
    return filtered


# ── Section 3: Gates ─────────────────────────────────────────────────────────


def matches_gate_pattern(tag: str, pattern: str) -> bool:
    """Patterns ending in ``.`` match by prefix, all others exactly."""
    if pattern.endswith("."):
        return tag.startswith(pattern)
    return tag == pattern


def has_gate_match(tags: Iterable[str], allow_list: Sequence[str]) -> bool:
    """True when any tag matches any allow-list pattern."""
    return any(
        matches_gate_pattern(tag, pattern) for tag in tags for pattern in allow_list
    )


def eval_gates(
    tags: Iterable[str],
    allow_lists: Mapping[str, Sequence[str]] = GATE_ALLOW_LISTS,
) -> Dict[str, bool]:
    """Evaluate every gate against a tag collection."""
    tag_list = list(tags)
    return {gate: has_gate_match(tag_list, allow_lists[gate]) for gate in GATE_NAMES}


# ── Section 4: Baseline ──────────────────────────────────────────────────────

BASELINE_LOW_MAX = 3
BASELINE_HIGH_MIN = 7


def _level(value: int) -> str:
    if value <= BASELINE_LOW_MAX:
        return "low"
    if value >= BASELINE_HIGH_MIN:
        return "high"
    return "mid"


def baseline_to_tags(metrics: BaselineMetrics) -> List[str]:
    """Translate the six baseline metrics into signal tags.

    Values up to 3 read as low, from 7 as high, anything between as mid.
    """
    tags: List[str] = []

    valence = _level(metrics.valence)
    tags.append({"low": "sig.valence.neg", "high": "sig.valence.pos"}.get(
        valence, "sig.valence.neutral"
    ))

    energy = _level(metrics.energy)
    if energy == "low":
        tags.extend(["sig.fatigue.high", "sig.arousal.low"])
    elif energy == "high":
        tags.extend(["sig.fatigue.low", "sig.arousal.high"])
    else:
        tags.extend(["sig.fatigue.mid", "sig.arousal.mid"])

    tags.append(f"sig.tension.{_level(metrics.tension)}")
    tags.append(f"sig.clarity.{_level(metrics.clarity)}")
    tags.append(f"sig.agency.{_level(metrics.control)}")
    tags.append(f"sig.social.{_level(metrics.social)}")
    return tags


# ── Section 5: Default collaborators ─────────────────────────────────────────


class DefaultTagPipeline:
    """Tag pipeline backed by the functions of this module."""

    def __init__(self, aliases: Optional[Mapping[str, str]] = None) -> None:
        self.aliases: Dict[str, str] = {
            normalize_token(key): value for key, value in (aliases or {}).items()
        }

    def canonicalize_tags(self, raw_tags: Iterable[Optional[str]]) -> List[str]:
        return canonicalize_tags(raw_tags, self.aliases)

    def derive_sig_tags_from_array(self, canonical_tags: Iterable[str]) -> List[str]:
        return derive_sig_tags_from_array(canonical_tags)

    def build_scoring_tags(self, expanded_tags: Sequence[str]) -> List[str]:
        return build_scoring_tags(expanded_tags)


class AllowListGateEngine:
    """Gate engine matching tags against named allow-lists."""

    def __init__(self, allow_lists: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        self.allow_lists: Dict[str, Tuple[str, ...]] = {
            gate: tuple(patterns)
            for gate, patterns in (allow_lists or GATE_ALLOW_LISTS).items()
        }
        missing = [gate for gate in GATE_NAMES if gate not in self.allow_lists]
        if missing:
            raise ValueError(f"Allow-lists missing for gates: {missing}")

    def has_gate_match(self, tags: Iterable[str], allow_list: Sequence[str]) -> bool:
        return has_gate_match(tags, allow_list)
