"""Core data models for the deep-session engine."""
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

BASELINE_METRIC_NAMES: Tuple[str, ...] = (
    "valence",
    "energy",
    "tension",
    "clarity",
    "control",
    "social",
)


class Choice(str, Enum):
    """Answer choices accepted for a shown card."""

    A = "A"
    B = "B"
    NOT_SURE = "NS"


def normalize_choice(value: Union["Choice", str]) -> Choice:
    """Resolve a raw answer value to a Choice.

    Raises:
        ContractViolationError: If value is not A, B or NS.
    """
    if isinstance(value, Choice):
        return value
    for member in Choice:
        if member.value == value:
            return member
    raise ContractViolationError(
        f"Unknown choice: {value!r}. Valid values: {[m.value for m in Choice]}"
    )


class BaselineMetrics(BaseModel):
    """Six self-reported 1-9 values captured before any card is shown."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    valence: int = Field(..., ge=1, le=9, description="Mood, low to high")
    energy: int = Field(..., ge=1, le=9, description="Energy, drained to charged")
    tension: int = Field(..., ge=1, le=9, description="Tension, calm to tense")
    clarity: int = Field(..., ge=1, le=9, description="Mental clarity")
    control: int = Field(..., ge=1, le=9, description="Sense of control")
    social: int = Field(..., ge=1, le=9, description="Social connectedness")


class CardOption(BaseModel):
    """One answer option of a card and the raw tags it yields."""

    model_config = ConfigDict(frozen=True)

    label: str = Field(..., min_length=1, description="Text shown for the option")
    tags: List[str] = Field(
        default_factory=list, description="Raw evidence tags emitted on selection"
    )


class Card(BaseModel):
    """Immutable question card from an L1 or L2 deck."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Deck-unique card identifier")
    title: str = Field(..., min_length=1, description="Question text")
    type: str = Field(default="choice", min_length=1, description="Card kind")
    options: List[CardOption] = Field(
        ..., min_length=2, description="Option A first, option B second"
    )
    cluster: Optional[str] = Field(None, description="Thematic cluster")
    meta: Dict[str, Any] = Field(
        default_factory=dict, description="Strategy hints (opaque to the runner)"
    )

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        if v != v.strip():
            raise ValueError(f"card id must not carry surrounding whitespace: {v!r}")
        return v

    def option_for(self, choice: Choice) -> Optional[CardOption]:
        """Return the option answered by choice, or None for NS."""
        if choice is Choice.A:
            return self.options[0]
        if choice is Choice.B:
            return self.options[1]
        return None

    def __repr__(self) -> str:
        """Human-readable representation."""
        return f"Card(id={self.id}, options={len(self.options)})"


# Custom Exceptions
class DeepSessionError(Exception):
    """Base exception for all library errors."""
    pass


class ContractViolationError(DeepSessionError):
    """A programming or protocol error that aborts the session."""
    pass


class FixtureError(DeepSessionError):
    """A golden fixture file could not be read or is invalid."""
    pass


class GoldenInvariantError(DeepSessionError):
    """Raised when a finished run breaks one or more golden invariants."""

    def __init__(self, violations: Tuple[str, ...]) -> None:
        self.violations = violations
        super().__init__(f"Golden invariant violation: {'; '.join(violations)}")
