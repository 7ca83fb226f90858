"""Committed JSON Schema for golden snapshot files.

The schema is hand-maintained next to the pydantic ``GoldenSnapshot`` model
and used as the secondary validation layer.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

_SCHEMA_DIR = Path(__file__).parent
_SUFFIX = ".schema.json"

GOLDEN_SNAPSHOT_SCHEMA = "golden_snapshot"


def list_schemas() -> List[str]:
    return sorted(p.name[: -len(_SUFFIX)] for p in _SCHEMA_DIR.glob(f"*{_SUFFIX}"))


def schema_path(name: str) -> Path:
    """Path of the schema file called name.

    Raises:
        FileNotFoundError: If no such schema is committed.
    """
    path = _SCHEMA_DIR / f"{name}{_SUFFIX}"
    if not path.is_file():
        raise FileNotFoundError(f"No schema named {name!r}. Available: {list_schemas()}")
    return path


def load_schema(name: str) -> Dict[str, Any]:
    """Parse a schema file; callers get their own copy."""
    result: Dict[str, Any] = json.loads(_schema_text(name))
    return result


@lru_cache(maxsize=None)
def _schema_text(name: str) -> str:
    return schema_path(name).read_text(encoding="utf-8")


def load_snapshot_schema() -> Dict[str, Any]:
    return load_schema(GOLDEN_SNAPSHOT_SCHEMA)
