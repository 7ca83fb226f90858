"""Golden fixture loading.

Fixtures live next to this module as ``<id>.fixture.json`` files. Each is
validated into a GoldenFixture and hashed as raw JSON so stored snapshots
can detect fixture edits.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from deep_session.config import SessionConfig, create_flow_config
from deep_session.golden.hashing import hash_fixture
from deep_session.models import BaselineMetrics, FixtureError
from deep_session.profiles import PROFILE_NAMES

DEFAULT_FIXTURES_DIR = Path(__file__).parent / "fixtures"
FIXTURE_SUFFIX = ".fixture.json"

ForcedAnswer = Literal["left", "right", "not_sure"]


class AnswerPolicy(BaseModel):
    """How answers are produced: forced in order, then sampled by profile."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    profile: Optional[str] = Field(
        None, description="Sampling profile; defaults to the session config profile"
    )
    forced_answers: List[ForcedAnswer] = Field(
        default_factory=list, description="Answers used in order before sampling"
    )

    @model_validator(mode="after")
    def _known_profile(self) -> "AnswerPolicy":
        if self.profile is not None and self.profile not in PROFILE_NAMES:
            raise ValueError(
                f"Unknown profile: {self.profile!r}. Valid profiles: {sorted(PROFILE_NAMES)}"
            )
        return self


class FixtureExpectations(BaseModel):
    """Outcome expectations checked on top of the golden invariants."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed_ended_reasons: Optional[List[str]] = None
    forbid_max_steps_reached: bool = True
    ended_reason: Optional[str] = None
    ended_by: Optional[str] = None
    max_asked_l1: Optional[int] = Field(None, ge=0)
    max_asked_l2: Optional[int] = Field(None, ge=0)
    asked_l2_count: Optional[int] = Field(None, ge=0)
    min_not_sure_count: Optional[int] = Field(None, ge=0)
    micro_selected_not_null: bool = False


class GoldenFixture(BaseModel):
    """A pinned session input: seed, baseline, config overrides and answers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., pattern=r"^[A-Za-z0-9_.\-]+$", description="Fixture id")
    description: str = Field(default="", description="What the fixture covers")
    seed: int = Field(..., description="Seed of the session random source")
    baseline_metrics: BaselineMetrics
    tags: List[str] = Field(default_factory=list, description="Fixture-level tags")
    flow_config_overrides: Dict[str, Any] = Field(default_factory=dict)
    answer_policy: AnswerPolicy = Field(default_factory=AnswerPolicy)
    forced_l1_card_order: Optional[List[str]] = None
    expect: FixtureExpectations = Field(default_factory=FixtureExpectations)

    @model_validator(mode="after")
    def _valid_overrides(self) -> "GoldenFixture":
        try:
            create_flow_config(self.flow_config_overrides)
        except PydanticValidationError as exc:
            raise ValueError(f"invalid flow_config_overrides: {exc}") from exc
        return self

    def flow_config(self) -> SessionConfig:
        return create_flow_config(self.flow_config_overrides)


@dataclass(frozen=True)
class FixtureCase:
    """A loaded fixture with its source path and content hash."""

    id: str
    path: Path
    fixture: GoldenFixture
    fixture_hash: str


def load_fixture(path: Path) -> FixtureCase:
    """Load and validate a single fixture file.

    Raises:
        FixtureError: If the file is not valid JSON, fails validation, or
            its id does not match its file name.
    """
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FixtureError(f"Cannot read fixture {path}: {exc}") from exc
    try:
        fixture = GoldenFixture.model_validate(raw)
    except PydanticValidationError as exc:
        raise FixtureError(f"Invalid fixture {path}: {exc}") from exc

    expected_id = path.name[: -len(FIXTURE_SUFFIX)]
    if fixture.id != expected_id:
        raise FixtureError(
            f"Fixture id {fixture.id!r} does not match file name {path.name!r}"
        )
    return FixtureCase(
        id=fixture.id, path=path, fixture=fixture, fixture_hash=hash_fixture(raw)
    )


def list_fixture_paths(fixtures_dir: Optional[Path] = None) -> List[Path]:
    directory = fixtures_dir or DEFAULT_FIXTURES_DIR
    return sorted(directory.glob(f"*{FIXTURE_SUFFIX}"))


def load_fixtures(
    fixtures_dir: Optional[Path] = None,
    only: Optional[Iterable[str]] = None,
) -> List[FixtureCase]:
    """Load all fixtures of a directory, sorted by id.

    Args:
        fixtures_dir: Directory to scan; defaults to the bundled fixtures.
        only: Restrict to these ids.

    Raises:
        FixtureError: If a requested id has no fixture file, or a file is
            invalid.
    """
    cases = [load_fixture(path) for path in list_fixture_paths(fixtures_dir)]
    if only is None:
        return cases
    wanted = [fixture_id for fixture_id in only if fixture_id]
    known = {case.id for case in cases}
    missing = [fixture_id for fixture_id in wanted if fixture_id not in known]
    if missing:
        raise FixtureError(
            f"Unknown fixture ids: {missing}. Available: {sorted(known)}"
        )
    selected = set(wanted)
    return [case for case in cases if case.id in selected]
