"""
deep-session: deterministic adaptive questionnaire sessions with golden-session tooling.

The session runner drives a two-tier card flow (broad L1 cards, then
targeted L2 probes) over injected collaborators, records every state
change as an append-only event log, and ends with an explicit reason.
The ``deep_session.golden`` package pins whole runs as snapshots.

Example:
    >>> from deep_session import SeededRandom, SessionRunner, build_runner_deps
    >>> from deep_session import create_flow_config
    >>> deps = build_runner_deps(create_flow_config({"max_l2": 2}), SeededRandom(1))
    >>> runner = SessionRunner(deps)
    >>> events = runner.init({"valence": 5, "energy": 5, "tension": 5,
    ...                       "clarity": 5, "control": 5, "social": 5})
    >>> events[0].type
    'session_start'
"""

__version__ = "1.2.0"

# Core data models
from deep_session.models import (
    BASELINE_METRIC_NAMES,
    BaselineMetrics,
    Card,
    CardOption,
    Choice,
    ContractViolationError,
    DeepSessionError,
    FixtureError,
    GoldenInvariantError,
    normalize_choice,
)

# Configuration
from deep_session.config import (
    DEFAULT_FLOW_CONFIG,
    SessionConfig,
    create_flow_config,
)

# Events
from deep_session.events import (
    ANSWER_COMMITTED,
    BASELINE_INJECTED,
    CARD_SHOWN,
    EVIDENCE_ADDED,
    EXPECTED_MACRO_COMPUTED,
    GATE_HIT,
    MACRO_UPDATED,
    MICRO_SELECTED,
    SESSION_END,
    SESSION_EVENT_TYPES,
    SESSION_START,
    EndedBy,
    EndedReason,
    EvidenceSource,
    GateScope,
    Layer,
    SessionEvent,
    create_event,
)

# State
from deep_session.state import (
    MicroSource,
    MicroState,
    Phase,
    SessionState,
    micro_violations,
)

# Tags and gates
from deep_session.tags import (
    CORE_GATES,
    GATE_ALLOW_LISTS,
    GATE_NAMES,
    SUPPORT_GATES,
    AllowListGateEngine,
    DefaultTagPipeline,
    baseline_to_tags,
)

# Signal quality
from deep_session.signal_quality import SignalQuality, compute_signal_quality

# Collaborators
from deep_session.deps import (
    CommitResult,
    Decks,
    L1Selection,
    L2Plan,
    MacroResult,
    MicroResult,
    NextCard,
    PlannerContext,
    RunnerDeps,
    SelectorContext,
)
from deep_session.reference import build_runner_deps, load_decks
from deep_session.rng import SeededRandom

# Runner and replay
from deep_session.runner import SessionRunner
from deep_session.replay import ReducedSessionView, SessionAnomaly, reduce_session_events

__all__ = [
    # Version
    "__version__",
    # Models
    "BASELINE_METRIC_NAMES",
    "BaselineMetrics",
    "Card",
    "CardOption",
    "Choice",
    "normalize_choice",
    "DeepSessionError",
    "ContractViolationError",
    "FixtureError",
    "GoldenInvariantError",
    # Configuration
    "DEFAULT_FLOW_CONFIG",
    "SessionConfig",
    "create_flow_config",
    # Events
    "SESSION_START",
    "BASELINE_INJECTED",
    "CARD_SHOWN",
    "ANSWER_COMMITTED",
    "EVIDENCE_ADDED",
    "GATE_HIT",
    "MACRO_UPDATED",
    "MICRO_SELECTED",
    "EXPECTED_MACRO_COMPUTED",
    "SESSION_END",
    "SESSION_EVENT_TYPES",
    "EndedBy",
    "EndedReason",
    "EvidenceSource",
    "GateScope",
    "Layer",
    "SessionEvent",
    "create_event",
    # State
    "MicroSource",
    "MicroState",
    "Phase",
    "SessionState",
    "micro_violations",
    # Tags and gates
    "CORE_GATES",
    "GATE_ALLOW_LISTS",
    "GATE_NAMES",
    "SUPPORT_GATES",
    "AllowListGateEngine",
    "DefaultTagPipeline",
    "baseline_to_tags",
    # Signal quality
    "SignalQuality",
    "compute_signal_quality",
    # Collaborators
    "CommitResult",
    "Decks",
    "L1Selection",
    "L2Plan",
    "MacroResult",
    "MicroResult",
    "NextCard",
    "PlannerContext",
    "RunnerDeps",
    "SelectorContext",
    "build_runner_deps",
    "load_decks",
    "SeededRandom",
    # Runner and replay
    "SessionRunner",
    "ReducedSessionView",
    "SessionAnomaly",
    "reduce_session_events",
]
