"""Content hashing for fixtures, configs and projections."""
from __future__ import annotations

import hashlib
import json
from typing import Any


def stable_stringify(obj: Any) -> str:
    """Canonical JSON: keys sorted at every level, no whitespace."""
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def hash_object(obj: Any) -> str:
    """SHA-1 hex digest of the canonical JSON form of obj."""
    return hashlib.sha1(stable_stringify(obj).encode("utf-8")).hexdigest()


def hash_fixture(fixture_data: Any) -> str:
    """Hash the raw fixture document; any edit produces a new hash."""
    return hash_object(fixture_data)


def hash_config(config_data: Any) -> str:
    """Hash the effective session config (flow config plus seed)."""
    return hash_object(config_data)
