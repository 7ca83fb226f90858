"""Session flow configuration."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from deep_session.profiles import MIX, PROFILE_NAMES


class SessionConfig(BaseModel):
    """Immutable card caps, quotas and behavior switches for one session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_l1: int = Field(default=6, description="Maximum number of L1 cards")
    max_l2: int = Field(default=6, description="Maximum number of L2 cards (0 skips L2)")
    min_l1: int = Field(default=3, description="L1 cards required before an early stop")
    min_l2: int = Field(default=2, description="L2 cards required before an early stop")
    stop_on_gates: bool = Field(
        default=True, description="End early once all gates are satisfied"
    )
    not_sure_rate: float = Field(
        default=0.25, description="Probability of a simulated NS answer"
    )
    profile: str = Field(default=MIX, description="Answer-sampling profile id")
    coverage_first_enabled: bool = Field(
        default=True, description="Let the L1 selector cover core gates first"
    )
    baseline_injection_enabled: bool = Field(
        default=True, description="Feed baseline-derived tags into the evidence path"
    )
    max_steps: int = Field(default=64, description="Hard safety cap on committed steps")

    @model_validator(mode="after")
    def _check_bounds(self) -> "SessionConfig":
        """Enforce the cap, quota and rate invariants."""
        if self.max_l1 <= 0:
            raise ValueError(f"max_l1 must be > 0; got {self.max_l1}")
        if self.max_l2 < 0:
            raise ValueError(f"max_l2 must be >= 0; got {self.max_l2}")
        if not 0 <= self.min_l1 <= self.max_l1:
            raise ValueError(
                f"min_l1 must be within [0, max_l1={self.max_l1}]; got {self.min_l1}"
            )
        if not 0 <= self.min_l2 <= self.max_l2:
            raise ValueError(
                f"min_l2 must be within [0, max_l2={self.max_l2}]; got {self.min_l2}"
            )
        if not 0.0 <= self.not_sure_rate <= 1.0:
            raise ValueError(
                f"not_sure_rate must be within [0, 1]; got {self.not_sure_rate}"
            )
        if self.max_steps <= 0:
            raise ValueError(f"max_steps must be > 0; got {self.max_steps}")
        if self.profile not in PROFILE_NAMES:
            raise ValueError(
                f"Unknown profile: {self.profile!r}. "
                f"Valid profiles: {sorted(PROFILE_NAMES)}"
            )
        return self


DEFAULT_FLOW_CONFIG: SessionConfig = SessionConfig()


def create_flow_config(overrides: Optional[Mapping[str, Any]] = None) -> SessionConfig:
    """Build a validated SessionConfig from the defaults plus overrides.

    Raises:
        pydantic.ValidationError: On unknown keys or broken invariants.
    """
    merged: Dict[str, Any] = DEFAULT_FLOW_CONFIG.model_dump()
    merged.update(dict(overrides or {}))
    return SessionConfig.model_validate(merged)
