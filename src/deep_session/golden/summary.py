"""Markdown summary of stored golden snapshots."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping

from deep_session.golden.snapshots import list_snapshot_paths, read_snapshot, snapshot_id_from_path
from deep_session.tags import CORE_GATES

_HEADER = (
    "| id | ended reason | L1 | L2 | NS | macro before | macro after | micro "
    "| core gates (cards) | expected macro | score | contradiction |"
)
_SEPARATOR = "|" + "---|" * 12


@dataclass(frozen=True)
class SummaryRow:
    fixture_id: str
    ended_reason: str
    asked_l1_count: int
    asked_l2_count: int
    not_sure_count: int
    macro_before: str
    macro_after: str
    micro: str
    core_gates_cards_only: int
    expected_macro: str
    signal_score: int
    has_contradiction: bool

    def render(self) -> str:
        cells = [
            self.fixture_id,
            self.ended_reason,
            str(self.asked_l1_count),
            str(self.asked_l2_count),
            str(self.not_sure_count),
            self.macro_before,
            self.macro_after,
            self.micro,
            f"{self.core_gates_cards_only}/{len(CORE_GATES)}",
            self.expected_macro,
            str(self.signal_score),
            "YES" if self.has_contradiction else "NO",
        ]
        return "| " + " | ".join(cells) + " |"


def summarize_snapshot(fixture_id: str, snapshot: Mapping[str, Any]) -> SummaryRow:
    final = snapshot.get("final") or {}
    macro_before = final.get("macro_before_cards") or "none"
    micro = final.get("micro") or {}
    source = micro.get("source") or "not_computed"
    gates = final.get("gates_hit_cards_only") or {}
    return SummaryRow(
        fixture_id=fixture_id,
        ended_reason=final.get("ended_reason") or "unknown",
        asked_l1_count=final.get("asked_l1_count", 0),
        asked_l2_count=final.get("asked_l2_count", 0),
        not_sure_count=final.get("not_sure_count", 0),
        macro_before=macro_before,
        macro_after=final.get("macro_after_l2") or final.get("macro_after_l1") or macro_before,
        micro=micro.get("selected") if source == "selected" and micro.get("selected") else source,
        core_gates_cards_only=sum(1 for gate in CORE_GATES if gates.get(gate)),
        expected_macro=final.get("expected_macro") or "mixed",
        signal_score=final.get("signal_score", 0),
        has_contradiction=bool(final.get("has_contradiction")),
    )


def build_summary(snapshots_dir: Path) -> str:
    """Render every readable snapshot of a directory as a markdown table.

    Raises:
        OSError, json.JSONDecodeError: If a snapshot file cannot be read.
    """
    rows: List[SummaryRow] = []
    for path in list_snapshot_paths(snapshots_dir):
        rows.append(summarize_snapshot(snapshot_id_from_path(path), read_snapshot(path)))

    contradictions = sum(1 for row in rows if row.has_contradiction)
    lines = [
        "# Golden sessions summary",
        "",
        f"Sessions: {len(rows)}, contradictions: {contradictions}",
        "",
        _HEADER,
        _SEPARATOR,
    ]
    lines.extend(row.render() for row in rows)
    return "\n".join(lines) + "\n"
