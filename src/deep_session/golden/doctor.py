"""Snapshot health check: missing, orphaned, outdated and invalid snapshots."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from deep_session.golden.fixtures import load_fixtures
from deep_session.golden.projection import GOLDEN_SNAPSHOT_VERSION
from deep_session.golden.snapshots import (
    list_snapshot_paths,
    read_snapshot,
    snapshot_id_from_path,
    snapshot_path,
)


@dataclass(frozen=True)
class OutdatedSnapshot:
    fixture_id: str
    reason: str
    expected: str
    actual: str


@dataclass
class DoctorReport:
    """Findings of one doctor pass; healthy when every list is empty."""

    fixture_count: int = 0
    snapshot_count: int = 0
    missing: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)
    outdated: List[OutdatedSnapshot] = field(default_factory=list)
    invalid: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not (self.missing or self.orphaned or self.outdated or self.invalid)

    def render(self) -> str:
        lines = [
            "Golden sessions doctor",
            f"Fixtures: {self.fixture_count}",
            f"Snapshots: {self.snapshot_count}",
        ]
        if self.missing:
            lines.append(f"Missing snapshots ({len(self.missing)}):")
            lines.extend(f"  - {fixture_id}" for fixture_id in self.missing)
        if self.orphaned:
            lines.append(f"Orphaned snapshots ({len(self.orphaned)}):")
            lines.extend(f"  - {fixture_id} (no fixture found)" for fixture_id in self.orphaned)
        if self.invalid:
            lines.append(f"Unreadable snapshots ({len(self.invalid)}):")
            lines.extend(f"  - {fixture_id}: {message}" for fixture_id, message in self.invalid)
        if self.outdated:
            lines.append(f"Outdated snapshots ({len(self.outdated)}):")
            lines.extend(
                f"  - {item.fixture_id}: {item.reason} "
                f"(expected: {item.expected}, actual: {item.actual})"
                for item in self.outdated
            )
            lines.append("Run: deep-session-golden run --update")
        if self.healthy:
            lines.append("All snapshots are healthy")
        return "\n".join(lines)


def run_doctor(fixtures_dir: Optional[Path], snapshots_dir: Path) -> DoctorReport:
    """Cross-check fixtures and snapshots by id, fixture hash and version.

    Raises:
        FixtureError: If a fixture file is invalid.
    """
    cases = load_fixtures(fixtures_dir)
    snapshot_paths = list_snapshot_paths(snapshots_dir)
    report = DoctorReport(fixture_count=len(cases), snapshot_count=len(snapshot_paths))

    for case in cases:
        path = snapshot_path(snapshots_dir, case.id)
        if not path.exists():
            report.missing.append(case.id)
            continue
        try:
            data = read_snapshot(path)
        except (OSError, json.JSONDecodeError) as exc:
            report.invalid.append((case.id, str(exc)))
            continue
        config = data.get("config") if isinstance(data, dict) else None
        config = config if isinstance(config, dict) else {}

        stored_hash = config.get("fixture_hash")
        if stored_hash != case.fixture_hash:
            report.outdated.append(
                OutdatedSnapshot(
                    case.id,
                    "fixture_hash mismatch",
                    case.fixture_hash[:8],
                    str(stored_hash)[:8],
                )
            )
        stored_version = config.get("snapshot_version")
        if stored_version != GOLDEN_SNAPSHOT_VERSION:
            report.outdated.append(
                OutdatedSnapshot(
                    case.id,
                    "snapshot_version mismatch",
                    GOLDEN_SNAPSHOT_VERSION,
                    str(stored_version),
                )
            )

    known = {case.id for case in cases}
    report.orphaned = [
        snapshot_id_from_path(path)
        for path in snapshot_paths
        if snapshot_id_from_path(path) not in known
    ]
    return report
