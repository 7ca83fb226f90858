"""Answer-sampling profiles used to drive simulated sessions."""
from __future__ import annotations

from typing import Callable, Dict, FrozenSet, Optional, Tuple

from deep_session.models import Card, Choice

DECISIVE: str = "decisive"
UNCERTAIN: str = "uncertain"
SOMATIC: str = "somatic"
COGNITIVE: str = "cognitive"
MIX: str = "mix"

PROFILE_NAMES: FrozenSet[str] = frozenset({DECISIVE, UNCERTAIN, SOMATIC, COGNITIVE, MIX})

NOT_SURE_RATES: Dict[str, float] = {
    DECISIVE: 0.10,
    UNCERTAIN: 0.35,
    SOMATIC: 0.20,
    COGNITIVE: 0.20,
    MIX: 0.25,
}

MIX_COMPONENTS: Tuple[str, ...] = (DECISIVE, UNCERTAIN, SOMATIC, COGNITIVE)

# Card id fragments each profile answers with option A more often.
_PREFERRED_A_HINTS: Dict[str, Tuple[str, ...]] = {
    SOMATIC: ("body", "energy", "pressure"),
    COGNITIVE: ("clarity", "control", "expect"),
}

_BIASED_A_RATE = 0.7
_NEUTRAL_A_RATE = 0.5


def resolve_profile(profile: str, rng: Callable[[], float]) -> str:
    """Return the concrete profile for one answer; ``mix`` draws a component."""
    if profile not in PROFILE_NAMES:
        raise ValueError(
            f"Unknown profile: {profile!r}. Valid profiles: {sorted(PROFILE_NAMES)}"
        )
    if profile == MIX:
        return MIX_COMPONENTS[int(rng() * len(MIX_COMPONENTS))]
    return profile


def prefers_option_a(card_id: str, profile: str) -> bool:
    hints = _PREFERRED_A_HINTS.get(profile, ())
    lowered = card_id.lower()
    return any(hint in lowered for hint in hints)


def sample_answer(
    card: Card,
    profile: str,
    rng: Callable[[], float],
    not_sure_rate: Optional[float] = None,
) -> Choice:
    """Sample an answer for card.

    Args:
        card: The card being answered.
        profile: One of PROFILE_NAMES.
        rng: The session's seeded random source.
        not_sure_rate: Probability of answering NS. Defaults to the rate
            of the resolved profile.

    Returns:
        The sampled Choice. Consumes two draws (three for ``mix``).
    """
    active = resolve_profile(profile, rng)
    rate = NOT_SURE_RATES[active] if not_sure_rate is None else not_sure_rate
    if rng() < rate:
        return Choice.NOT_SURE
    threshold = _BIASED_A_RATE if prefers_option_a(card.id, active) else _NEUTRAL_A_RATE
    return Choice.A if rng() < threshold else Choice.B
