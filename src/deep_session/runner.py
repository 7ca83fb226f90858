"""Session runner: the deterministic L1 → L2 → ENDED state machine.

The runner exposes an explicit two-call protocol. ``get_next_card``
picks (or re-returns) the single pending card, and ``commit_answer``
records the answer for exactly that card. Every state change is mirrored
by an appended SessionEvent.

Ordering inside ``commit_answer`` is part of the contract: the early-stop
check runs right after the evidence update and before any phase
bookkeeping, so a session whose gates close during L1 never spills into L2.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel

from deep_session.deps import (
    CommitResult,
    MicroResult,
    NextCard,
    PlannerContext,
    RunnerDeps,
    SelectorContext,
)
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
    SESSION_START,
    AnswerCommittedPayload,
    BaselineInjectedPayload,
    CardShownPayload,
    EndedBy,
    EndedReason,
    EvidenceAddedPayload,
    EvidenceSource,
    ExpectedMacroComputedPayload,
    GateHitPayload,
    GateScope,
    Layer,
    MacroUpdatedPayload,
    MacroUpdateReason,
    MicroSelectedPayload,
    SessionEndPayload,
    SessionEvent,
    SessionStartPayload,
    create_event,
)
from deep_session.models import (
    BaselineMetrics,
    Card,
    Choice,
    ContractViolationError,
    normalize_choice,
)
from deep_session.signal_quality import compute_signal_quality
from deep_session.state import MicroSource, MicroState, Phase, SessionState, micro_violations
from deep_session.tags import CORE_GATES, GATE_NAMES, SUPPORT_GATES, baseline_to_tags, merge_unique

logger = logging.getLogger("deep_session.runner")

_COVERAGE_FIRST_PICKS = 3
_PLANNED_REASON = "planned"


class SessionRunner:
    """Drives one questionnaire session over injected collaborators.

    One instance owns exactly one SessionState. Run concurrent sessions
    with separate runners.
    """

    def __init__(self, deps: RunnerDeps) -> None:
        self._deps = deps
        self._config = deps.flow_config
        self._state = SessionState()
        self._events: List[SessionEvent] = []
        self._baseline_metrics: Optional[BaselineMetrics] = None
        self._fixture_tags: Tuple[str, ...] = ()

    # ── Public protocol ──────────────────────────────────────────────────────

    def init(
        self,
        baseline_metrics: Union[BaselineMetrics, dict],
        fixture_tags: Iterable[str] = (),
    ) -> List[SessionEvent]:
        """Reset the session and emit the opening events.

        ``session_start`` is always first; baseline injection (when enabled)
        follows it and may already open gates in the ``any`` scope.

        Returns:
            Copies of the events emitted by this call.
        """
        metrics = (
            baseline_metrics
            if isinstance(baseline_metrics, BaselineMetrics)
            else BaselineMetrics.model_validate(baseline_metrics)
        )
        self._state = SessionState()
        self._events = []
        self._baseline_metrics = metrics
        self._fixture_tags = tuple(fixture_tags)

        initial = self._deps.macro_engine.compute_macro(metrics, [])
        self._state.macro_before_cards = initial.macro
        self._state.current_macro = initial.macro

        self._emit(
            SESSION_START,
            SessionStartPayload(
                baseline_metrics=metrics, fixture_tags=list(self._fixture_tags)
            ),
        )
        if self._config.baseline_injection_enabled:
            baseline_tags = baseline_to_tags(metrics)
            self._emit(
                BASELINE_INJECTED,
                BaselineInjectedPayload(tags=baseline_tags, count=len(baseline_tags)),
                layer=Layer.BASELINE,
            )
            self._add_evidence(baseline_tags, EvidenceSource.BASELINE, Layer.BASELINE, None)

        logger.info(
            "Session started: macro=%s baseline_injection=%s",
            initial.macro,
            self._config.baseline_injection_enabled,
        )
        return [event.model_copy(deep=True) for event in self._events]

    def get_next_card(self) -> Optional[NextCard]:
        """Return the pending card, selecting a new one when none is pending.

        Idempotent while a card is pending: the same NextCard comes back
        and no event is appended. Returns None once the session has ended.
        """
        self._require_started()
        state = self._state
        if state.phase is Phase.ENDED:
            return None
        if state.current_card_id is not None:
            return self._pending_card()
        if state.step >= self._config.max_steps:
            logger.warning("Step cap %d reached", self._config.max_steps)
            self._end_session(EndedReason.MAX_STEPS_REACHED, self._ended_by())
            return None

        if state.phase is Phase.L1:
            next_card = self._select_l1()
            if next_card is not None:
                return next_card
            state.phase = Phase.L2
        return self._select_l2()

    def commit_answer(self, card_id: str, choice: Union[Choice, str]) -> CommitResult:
        """Record the answer for the pending card and advance the session.

        Raises:
            ContractViolationError: If the session has ended, if card_id is
                not the pending card, if choice is unknown, or if the micro
                engine produces an inconsistent result.
        """
        self._require_started()
        state = self._state
        if state.phase is Phase.ENDED:
            raise ContractViolationError(
                f"commit_answer after session end: got={card_id}"
            )
        if state.current_card_id is None or state.current_card_id != card_id:
            raise ContractViolationError(
                f"commit_answer mismatch: expected={state.current_card_id or 'none'} "
                f"got={card_id}"
            )
        answer = normalize_choice(choice)
        layer = state.current_layer
        card = self._deps.decks.get(layer, card_id) if layer is not None else None
        if layer is None or card is None:
            raise ContractViolationError(
                f"Pending card {card_id!r} is not in the {layer} deck"
            )

        mark = len(self._events)
        self._emit(
            ANSWER_COMMITTED,
            AnswerCommittedPayload(choice=answer),
            layer=layer,
            card_id=card_id,
        )
        if answer is Choice.NOT_SURE:
            state.not_sure_count += 1

        raw_tags = self._deps.answer_tagger(card, answer)
        if answer is Choice.NOT_SURE:
            source = EvidenceSource.NOT_SURE
        else:
            source = EvidenceSource.L1 if layer is Layer.L1 else EvidenceSource.L2
        self._add_evidence(raw_tags, source, layer, card_id)

        if self.should_early_stop():
            self._end_session(
                EndedReason.GATES_CLOSED,
                EndedBy.L1 if layer is Layer.L1 else EndedBy.L2,
            )
            return self._commit_result(mark, None)

        if (
            layer is Layer.L1
            and state.phase is Phase.L1
            and state.asked_l1_count >= self._config.max_l1
        ):
            state.phase = Phase.L2

        state.current_card_id = None
        state.current_layer = None
        state.current_card_reason = None
        state.step += 1

        self._update_macro(layer, card_id)
        self._update_micro(layer, card_id)

        next_card = self.get_next_card()
        return self._commit_result(mark, next_card)

    def should_early_stop(self) -> bool:
        """True when the phase quota is met and every gate is satisfied.

        Core gates count only when confirmed by card answers; support gates
        (load, social) may come from the baseline.
        """
        if not self._config.stop_on_gates:
            return False
        state = self._state
        if state.phase is Phase.L1:
            if state.asked_l1_count < self._config.min_l1:
                return False
        elif state.phase is Phase.L2:
            if state.asked_l2_count < self._config.min_l2:
                return False
        else:
            return False
        core_ok = all(state.gates_hit_cards_only.get(gate, False) for gate in CORE_GATES)
        support_ok = all(state.gates_hit_any.get(gate, False) for gate in SUPPORT_GATES)
        return core_ok and support_ok

    def get_state(self) -> SessionState:
        """Deep copy of the current state."""
        return self._state.model_copy(deep=True)

    def get_events(self) -> List[SessionEvent]:
        """Deep copies of all events, in emission order."""
        return [event.model_copy(deep=True) for event in self._events]

    @property
    def is_ended(self) -> bool:
        return self._state.phase is Phase.ENDED

    # ── Selection ────────────────────────────────────────────────────────────

    def _select_l1(self) -> Optional[NextCard]:
        state = self._state
        if state.asked_l1_count >= self._config.max_l1:
            return None
        ctx = SelectorContext(
            macro_base=state.macro_before_cards,
            macro=state.current_macro,
            asked_ids=tuple(state.asked_l1_ids),
            evidence_tags=tuple(state.evidence_tags),
            gates_hit_any=dict(state.gates_hit_any),
            gates_hit_cards_only=dict(state.gates_hit_cards_only),
            flow_config=self._config,
            deck=self._deps.decks.l1,
            rng=self._deps.rng,
        )
        selection = self._deps.l1_selector(ctx)
        if selection is None:
            logger.debug("L1 selector returned no card after %d cards", state.asked_l1_count)
            return None
        card = self._deps.decks.get(Layer.L1, selection.card_id)
        if card is None:
            raise ContractViolationError(
                f"L1 selector returned {selection.card_id!r}, which is not in the L1 deck"
            )
        if selection.card_id in state.asked_l1_ids:
            raise ContractViolationError(
                f"L1 selector returned already asked card {selection.card_id!r}"
            )

        # Marked asked before card_shown is emitted.
        state.asked_l1_ids.append(card.id)
        if (
            self._config.coverage_first_enabled
            and len(state.coverage_first_picks) < _COVERAGE_FIRST_PICKS
        ):
            state.coverage_first_picks.append(card.id)
        return self._show(card, Layer.L1, selection.reason)

    def _select_l2(self) -> Optional[NextCard]:
        state = self._state
        if self._config.max_l2 == 0:
            self._end_session(EndedReason.NO_L2_CANDIDATES, EndedBy.L1)
            return None
        if state.l2_plan is None:
            self._build_l2_plan()
        plan = state.l2_plan or []

        card: Optional[Card] = None
        while state.l2_plan_cursor < len(plan):
            candidate_id = plan[state.l2_plan_cursor]
            if candidate_id in state.asked_l2_ids or candidate_id in state.asked_l1_ids:
                logger.debug("Skipping already asked plan entry %s", candidate_id)
                state.l2_plan_cursor += 1
                continue
            card = self._deps.decks.get(Layer.L2, candidate_id)
            if card is None:
                logger.debug("Skipping plan entry %s outside the L2 deck", candidate_id)
                state.l2_plan_cursor += 1
                continue
            break

        if card is None:
            if state.asked_l2_count > 0:
                self._end_session(EndedReason.L2_PLAN_COMPLETED, EndedBy.L2)
            else:
                self._end_session(EndedReason.NO_L2_CANDIDATES, EndedBy.L2)
            return None
        if state.asked_l2_count >= self._config.max_l2:
            self._end_session(EndedReason.MAX_L2, EndedBy.L2)
            return None

        state.l2_plan_cursor += 1
        state.asked_l2_ids.append(card.id)
        return self._show(card, Layer.L2, _PLANNED_REASON)

    def _build_l2_plan(self) -> None:
        state = self._state
        top_states = merge_unique(
            name
            for name in (state.current_macro, state.micro.selected, state.micro.top_candidate)
            if name
        )
        ctx = PlannerContext(
            top_states=tuple(top_states),
            already_asked_ids=tuple(state.asked_l1_ids + state.asked_l2_ids),
            evidence_tags=tuple(state.evidence_tags),
            macro=state.current_macro,
            flow_config=self._config,
            deck=self._deps.decks.l2,
            rng=self._deps.rng,
        )
        result = self._deps.l2_planner(ctx)
        state.l2_plan = list(result.plan)
        state.l2_plan_reason = result.reason
        state.l2_plan_cursor = 0
        logger.debug(
            "L2 plan built: %s (reason=%s, top_states=%s)",
            state.l2_plan,
            result.reason,
            top_states,
        )

    def _show(self, card: Card, layer: Layer, reason: str) -> NextCard:
        state = self._state
        expected = Phase.L1 if layer is Layer.L1 else Phase.L2
        if state.phase is not expected:
            raise ContractViolationError(
                f"card_shown for {layer.value} card {card.id!r} while phase is "
                f"{state.phase.value}"
            )
        state.current_card_id = card.id
        state.current_layer = layer
        state.current_card_reason = reason
        self._emit(
            CARD_SHOWN,
            CardShownPayload(
                card_id=card.id, card_title=card.title, card_type=card.type, reason=reason
            ),
            layer=layer,
            card_id=card.id,
        )
        return NextCard(layer=layer, card=card, reason=reason)

    def _pending_card(self) -> NextCard:
        state = self._state
        layer = state.current_layer
        card = self._deps.decks.get(layer, state.current_card_id or "") if layer else None
        if layer is None or card is None:
            raise ContractViolationError(
                f"Pending card {state.current_card_id!r} has no deck entry"
            )
        return NextCard(layer=layer, card=card, reason=state.current_card_reason or "")

    # ── Evidence and gates ───────────────────────────────────────────────────

    def _add_evidence(
        self,
        raw_tags: Iterable[Optional[str]],
        source: EvidenceSource,
        layer: Layer,
        card_id: Optional[str],
    ) -> None:
        pipeline = self._deps.tag_pipeline
        canonical = pipeline.canonicalize_tags(raw_tags)
        derived = pipeline.derive_sig_tags_from_array(canonical)
        tags = merge_unique(canonical, derived)
        if not tags:
            logger.debug("No evidence tags from %s card %s", layer.value, card_id)
            return

        state = self._state
        state.evidence_tags.extend(tags)
        if source is EvidenceSource.BASELINE:
            state.baseline_evidence_tags.extend(tags)
        else:
            state.card_evidence_tags.extend(tags)

        self._emit(
            EVIDENCE_ADDED,
            EvidenceAddedPayload(tags=tags, source=source, count=len(tags)),
            layer=layer,
            card_id=card_id,
        )
        self._check_gates(tags, source, layer, card_id)

    def _check_gates(
        self,
        tags: List[str],
        source: EvidenceSource,
        layer: Layer,
        card_id: Optional[str],
    ) -> None:
        engine = self._deps.gate_engine
        state = self._state
        from_cards = source is not EvidenceSource.BASELINE
        for gate in GATE_NAMES:
            allow_list = engine.allow_lists.get(gate)
            if not allow_list or not engine.has_gate_match(tags, allow_list):
                continue
            if not state.gates_hit_any.get(gate, False):
                state.gates_hit_any[gate] = True
                state.gate_first_hit_step[gate] = state.step
                logger.debug("Gate %s opened (any) at step %d", gate, state.step)
                self._emit(
                    GATE_HIT,
                    GateHitPayload(gate_name=gate, scope=GateScope.ANY),
                    layer=layer,
                    card_id=card_id,
                )
            if not from_cards:
                continue
            if not state.gates_hit_cards_only.get(gate, False):
                state.gates_hit_cards_only[gate] = True
                logger.debug("Gate %s opened (cards_only) at step %d", gate, state.step)
                self._emit(
                    GATE_HIT,
                    GateHitPayload(gate_name=gate, scope=GateScope.CARDS_ONLY),
                    layer=layer,
                    card_id=card_id,
                )
            if card_id is not None:
                counts = state.gate_hit_card_ids.setdefault(gate, {})
                counts[card_id] = counts.get(card_id, 0) + 1

    # ── Classification ───────────────────────────────────────────────────────

    def _update_macro(self, layer: Layer, card_id: str) -> None:
        state = self._state
        baseline = self._baseline_metrics
        if baseline is None:
            raise ContractViolationError("Session not initialized; call init() first")
        result = self._deps.macro_engine.compute_macro(
            baseline, list(state.evidence_tags)
        )
        state.current_macro = result.macro

        if layer is Layer.L1 and state.macro_after_l1 is None:
            previous = state.macro_before_cards
            state.macro_after_l1 = result.macro
            reason = MacroUpdateReason.AFTER_L1
        elif layer is Layer.L2 and state.macro_after_l2 is None:
            previous = state.macro_after_l1 or state.macro_before_cards
            state.macro_after_l2 = result.macro
            reason = MacroUpdateReason.AFTER_L2
        else:
            return
        if result.macro != previous:
            self._emit(
                MACRO_UPDATED,
                MacroUpdatedPayload(macro=result.macro, previous=previous, reason=reason),
                layer=layer,
                card_id=card_id,
            )

    def _update_micro(self, layer: Layer, card_id: str) -> None:
        state = self._state
        scoring_tags = self._deps.tag_pipeline.build_scoring_tags(list(state.evidence_tags))
        result = self._deps.micro_engine.select_micro(state.current_macro or "none", scoring_tags)
        micro = self._normalize_micro(result)
        violations = micro_violations(micro.selected, micro.source)
        if violations:
            raise ContractViolationError(
                f"Micro invariant violation: {'; '.join(violations)}"
            )
        state.micro = micro
        self._emit(
            MICRO_SELECTED,
            MicroSelectedPayload(
                selected=micro.selected,
                source=micro.source.value,
                reason=micro.reason,
                top_candidate=micro.top_candidate,
            ),
            layer=layer,
            card_id=card_id,
        )

    @staticmethod
    def _normalize_micro(result: MicroResult) -> MicroState:
        """Turn raw engine output into one consistent micro tuple.

        A missing selection always reads as ``not_computed``. An engine that
        claims ``selected`` without a selection, or ``not_computed`` with
        one, is broken and aborts the run.
        """
        selected = result.selected.strip() if isinstance(result.selected, str) else None
        if not selected:
            selected = None
        try:
            source = MicroSource(result.source)
        except ValueError:
            raise ContractViolationError(
                f"Micro engine returned unknown source {result.source!r}"
            ) from None
        if selected is None:
            if source is MicroSource.SELECTED:
                raise ContractViolationError(
                    "Micro engine reported source='selected' without a selection"
                )
            source = MicroSource.NOT_COMPUTED
        elif source is MicroSource.NOT_COMPUTED:
            raise ContractViolationError(
                f"Micro engine reported source='not_computed' with selection {selected!r}"
            )
        top_candidate = result.top_candidate.strip() if isinstance(result.top_candidate, str) else None
        return MicroState(
            selected=selected,
            source=source,
            reason=result.reason or source.value,
            top_candidate=top_candidate or None,
        )

    # ── Ending ───────────────────────────────────────────────────────────────

    def _ended_by(self) -> EndedBy:
        return EndedBy.L2 if self._state.asked_l2_count > 0 else EndedBy.L1

    def _end_session(self, reason: EndedReason, ended_by: EndedBy) -> None:
        state = self._state
        quality = compute_signal_quality(
            state.evidence_tags,
            state.baseline_evidence_tags,
            self._fixture_tags,
            state.final_macro,
            pipeline=self._deps.tag_pipeline,
        )
        state.signal_quality = quality
        self._emit(
            EXPECTED_MACRO_COMPUTED,
            ExpectedMacroComputedPayload(**quality.model_dump()),
        )

        state.phase = Phase.ENDED
        state.ended_by = ended_by
        state.ended_reason = reason
        state.current_card_id = None
        state.current_layer = None
        state.current_card_reason = None
        self._emit(
            SESSION_END,
            SessionEndPayload(
                ended_by=ended_by,
                ended_reason=reason,
                asked_l1_count=state.asked_l1_count,
                asked_l2_count=state.asked_l2_count,
                evidence_tags_count=len(state.evidence_tags),
                gates_hit_count=sum(1 for hit in state.gates_hit_any.values() if hit),
            ),
        )
        logger.info(
            "Session ended: reason=%s by=%s l1=%d l2=%d step=%d",
            reason.value,
            ended_by.value,
            state.asked_l1_count,
            state.asked_l2_count,
            state.step,
        )

    # ── Plumbing ─────────────────────────────────────────────────────────────

    def _emit(
        self,
        event_type: str,
        payload: BaseModel,
        *,
        layer: Optional[Layer] = None,
        card_id: Optional[str] = None,
    ) -> SessionEvent:
        event = create_event(
            event_type,
            self._state.step,
            payload,
            layer=layer,
            card_id=card_id,
            timestamp=self._deps.clock(),
        )
        self._events.append(event)
        return event

    def _commit_result(self, mark: int, next_card: Optional[NextCard]) -> CommitResult:
        return CommitResult(
            events=tuple(event.model_copy(deep=True) for event in self._events[mark:]),
            state=self.get_state(),
            next_card=next_card,
            ended=self._state.phase is Phase.ENDED,
        )

    def _require_started(self) -> None:
        if self._baseline_metrics is None:
            raise ContractViolationError("Session not initialized; call init() first")
