"""Dual-layer validation and file I/O for golden snapshots.

Validation combines:
1. Pydantic model validation (primary layer)
2. JSON Schema validation (optional secondary layer)
3. Snapshot rules that neither layer can express

The schema layer degrades gracefully if jsonschema is unavailable, unless
strict=True is specified.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from deep_session.config import SessionConfig
from deep_session.events import (
    ANSWER_COMMITTED,
    CARD_SHOWN,
    EXPECTED_MACRO_COMPUTED,
    SESSION_END,
    SESSION_START,
    EndedBy,
    EndedReason,
    GateScope,
    Layer,
)
from deep_session.golden.projection import GOLDEN_SNAPSHOT_VERSION, REQUIRED_CONFIG_KEYS
from deep_session.models import Choice
from deep_session.schemas import load_snapshot_schema
from deep_session.state import MicroSource, Phase

logger = logging.getLogger("deep_session.golden.snapshots")

SNAPSHOT_SUFFIX = ".snapshot.json"
MAX_SNAPSHOT_EVENTS = 128

# ── Section 1: Snapshot Models ───────────────────────────────────────────────


class SnapshotFixture(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    seed: int


class SnapshotConfig(SessionConfig):
    """Effective session config as stored in a snapshot."""

    seed: int = Field(..., description="Seed of the session random source")
    config_hash: str = Field(..., pattern=r"^[0-9a-f]{40}$")
    fixture_hash: str = Field(..., description="Hash of the fixture it was built from")
    snapshot_version: str = Field(..., min_length=1)


class SnapshotMicro(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    selected: Optional[str]
    source: MicroSource
    reason: Optional[str]
    top_candidate: Optional[str]


class SnapshotFinal(BaseModel):
    """Final state block of a snapshot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    phase: Phase
    ended_reason: Optional[EndedReason]
    ended_by: Optional[EndedBy]
    asked_l1_count: int = Field(..., ge=0)
    asked_l2_count: int = Field(..., ge=0)
    not_sure_count: int = Field(..., ge=0)
    macro_before_cards: Optional[str]
    macro_after_l1: Optional[str]
    macro_after_l2: Optional[str]
    micro: SnapshotMicro
    gates_hit_any: Dict[str, bool]
    gates_hit_cards_only: Dict[str, bool]
    baseline_evidence_tags: List[str]
    card_evidence_tags: List[str]
    evidence_tags: List[str]
    expected_macro: str
    signal_score: int
    scoring_tag_count: int = Field(..., ge=0)
    axis_tag_count: int = Field(..., ge=0)
    eligible_for_contradiction: bool
    top_signals: List[str] = Field(..., max_length=5)
    has_contradiction: bool
    final_macro: str


class SnapshotCoverage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    first_picks: List[str] = Field(default_factory=list)
    gate_first_hit_step: Dict[str, int] = Field(default_factory=dict)


class SnapshotEvent(BaseModel):
    """One entry of the stable event digest."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    i: int = Field(..., ge=0)
    type: str
    step: Optional[int] = Field(None, ge=0)
    layer: Optional[Layer] = None
    card_id: Optional[str] = Field(None, min_length=1)
    choice: Optional[Choice] = None
    tags: Optional[List[str]] = None
    gate: Optional[str] = Field(None, min_length=1)
    scope: Optional[GateScope] = None
    macro: Optional[str] = None
    micro: Optional[SnapshotMicro] = None
    expected_macro: Optional[str] = None
    ended_reason: Optional[str] = None
    reason: Optional[str] = None


class GoldenSnapshot(BaseModel):
    """A stored stable projection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fixture: SnapshotFixture
    config: SnapshotConfig
    final: SnapshotFinal
    coverage: SnapshotCoverage = Field(default_factory=SnapshotCoverage)
    events: List[SnapshotEvent] = Field(..., min_length=1)


# ── Section 2: Validation Results ────────────────────────────────────────────


@dataclass(frozen=True)
class ModelViolation:
    """A violation detected by Pydantic model validation."""

    field: str
    message: str
    violation_type: str
    input_value: object


@dataclass(frozen=True)
class SchemaViolation:
    """A violation detected by JSON Schema validation."""

    json_path: str
    message: str
    validator: str
    validator_value: object
    schema_path: Tuple[Union[str, int], ...]


@dataclass(frozen=True)
class SnapshotValidationResult:
    """Result of dual-layer snapshot validation plus snapshot rules."""

    valid: bool
    model_violations: Tuple[ModelViolation, ...]
    schema_violations: Tuple[SchemaViolation, ...]
    rule_violations: Tuple[str, ...]
    schema_check_skipped: bool
    snapshot_id: Optional[str]

    def messages(self) -> List[str]:
        """Flat, human-readable list of every violation."""
        out = [f"model {v.field}: {v.message}" for v in self.model_violations]
        out.extend(f"schema {v.json_path}: {v.message}" for v in self.schema_violations)
        out.extend(f"rule: {v}" for v in self.rule_violations)
        return out


# ── Section 3: Validation Layers ─────────────────────────────────────────────


def _validate_with_model(data: Any) -> Tuple[ModelViolation, ...]:
    try:
        GoldenSnapshot.model_validate(data)
        return ()
    except PydanticValidationError as e:
        return tuple(
            ModelViolation(
                field=".".join(str(loc) for loc in error["loc"]),
                message=error["msg"],
                violation_type=error["type"],
                input_value=error.get("input"),
            )
            for error in e.errors()
        )


def _validate_with_schema(
    data: Any, strict: bool
) -> Tuple[Tuple[SchemaViolation, ...], bool]:
    """Validate against the committed golden_snapshot schema.

    Returns:
        Tuple of (violations, skipped).

    Raises:
        ImportError: If strict=True and jsonschema is unavailable.
    """
    try:
        from jsonschema import Draft202012Validator
    except ImportError:
        if strict:
            raise ImportError(
                "jsonschema is required for strict snapshot validation. "
                "Install with: pip install 'deep-session[conformance]'"
            )
        return ((), True)

    validator = Draft202012Validator(load_snapshot_schema())
    violations = []
    for error in validator.iter_errors(data):
        json_path = "$" + "".join(
            f"[{p}]" if isinstance(p, int) else f".{p}" for p in error.absolute_path
        )
        violations.append(
            SchemaViolation(
                json_path=json_path,
                message=error.message,
                validator=str(error.validator),
                validator_value=error.validator_value,
                schema_path=tuple(error.absolute_schema_path),
            )
        )
    return (tuple(violations), False)


def _check_rules(data: Any) -> Tuple[str, ...]:
    if not isinstance(data, dict):
        return ("snapshot is not an object",)
    errors: List[str] = []

    config = data.get("config") if isinstance(data.get("config"), dict) else {}
    for key in REQUIRED_CONFIG_KEYS:
        if key not in config:
            errors.append(f"config.{key} missing")
    if not config.get("fixture_hash"):
        errors.append("config.fixture_hash missing or empty")
    version = config.get("snapshot_version")
    if version != GOLDEN_SNAPSHOT_VERSION:
        errors.append(
            f"config.snapshot_version is {version!r}, expected {GOLDEN_SNAPSHOT_VERSION!r}"
        )

    final = data.get("final") if isinstance(data.get("final"), dict) else {}
    if final.get("phase") != Phase.ENDED.value:
        errors.append(f"final.phase must be ENDED (got {final.get('phase')})")
    if not final.get("ended_reason"):
        errors.append("final.ended_reason missing")

    events = data.get("events") if isinstance(data.get("events"), list) else []
    types = [e.get("type") for e in events if isinstance(e, dict)]
    if len(events) > MAX_SNAPSHOT_EVENTS:
        errors.append(f"too many events ({len(events)} > {MAX_SNAPSHOT_EVENTS})")
    if types.count(SESSION_START) != 1:
        errors.append(f"expected exactly one session_start, found {types.count(SESSION_START)}")
    if types.count(SESSION_END) != 1:
        errors.append(f"expected exactly one session_end, found {types.count(SESSION_END)}")
    if types and types[-1] != SESSION_END:
        errors.append("session_end must be the last event")
    shown = types.count(CARD_SHOWN)
    answered = types.count(ANSWER_COMMITTED)
    if shown > answered + 1:
        errors.append(f"card_shown ({shown}) exceeds answer_committed ({answered}) + 1")
    if types.count(EXPECTED_MACRO_COMPUTED) > 1:
        errors.append("more than one expected_macro_computed event")
    return tuple(errors)


def validate_snapshot(data: Any, strict: bool = False) -> SnapshotValidationResult:
    """Validate a loaded snapshot document.

    Args:
        data: The parsed snapshot JSON.
        strict: If True, require jsonschema and fail if unavailable.

    Raises:
        ImportError: If strict=True and jsonschema is unavailable.
    """
    model_violations = _validate_with_model(data)
    schema_violations, schema_skipped = _validate_with_schema(data, strict)
    rule_violations = _check_rules(data)

    valid = (
        not model_violations
        and (not schema_violations or schema_skipped)
        and not rule_violations
    )
    fixture = data.get("fixture") if isinstance(data, dict) else None
    snapshot_id = fixture.get("id") if isinstance(fixture, dict) else None
    return SnapshotValidationResult(
        valid=valid,
        model_violations=model_violations,
        schema_violations=schema_violations,
        rule_violations=rule_violations,
        schema_check_skipped=schema_skipped,
        snapshot_id=snapshot_id,
    )


# ── Section 4: Files ─────────────────────────────────────────────────────────


def snapshot_path(snapshots_dir: Path, fixture_id: str) -> Path:
    return snapshots_dir / f"{fixture_id}{SNAPSHOT_SUFFIX}"


def list_snapshot_paths(snapshots_dir: Path) -> List[Path]:
    return sorted(snapshots_dir.glob(f"*{SNAPSHOT_SUFFIX}"))


def snapshot_id_from_path(path: Path) -> str:
    return path.name[: -len(SNAPSHOT_SUFFIX)]


def read_snapshot(path: Path) -> Any:
    """Parse a snapshot file.

    Raises:
        OSError: If the file cannot be read.
        json.JSONDecodeError: If the file is not JSON.
    """
    return json.loads(path.read_text(encoding="utf-8"))


def format_snapshot(projection: Any) -> str:
    """Pretty JSON with sorted keys and a trailing newline."""
    return json.dumps(projection, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def write_snapshot(path: Path, projection: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_snapshot(projection), encoding="utf-8")
    logger.info("Wrote snapshot %s", path)


def validate_snapshot_dir(
    snapshots_dir: Path, strict: bool = False
) -> Dict[str, SnapshotValidationResult]:
    """Validate every snapshot file of a directory, keyed by file id.

    Files that cannot be parsed yield an invalid result with one rule
    violation.
    """
    results: Dict[str, SnapshotValidationResult] = {}
    for path in list_snapshot_paths(snapshots_dir):
        snapshot_id = snapshot_id_from_path(path)
        try:
            data = read_snapshot(path)
        except (OSError, json.JSONDecodeError) as exc:
            results[snapshot_id] = SnapshotValidationResult(
                valid=False,
                model_violations=(),
                schema_violations=(),
                rule_violations=(f"cannot read snapshot: {exc}",),
                schema_check_skipped=True,
                snapshot_id=snapshot_id,
            )
            continue
        results[snapshot_id] = validate_snapshot(data, strict=strict)
    return results
