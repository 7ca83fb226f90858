"""Unit tests for session event contracts."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from deep_session.events import (
    ANSWER_COMMITTED,
    CARD_SHOWN,
    SESSION_END,
    SESSION_EVENT_TYPES,
    SESSION_START,
    AnswerCommittedPayload,
    CardShownPayload,
    EndedBy,
    EndedReason,
    GateHitPayload,
    GateScope,
    Layer,
    SessionEndPayload,
    SessionEvent,
    create_event,
)
from deep_session.models import Choice, ContractViolationError, normalize_choice

_T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestConstants:
    """Event type constants."""

    def test_ten_event_types(self) -> None:
        assert len(SESSION_EVENT_TYPES) == 10
        assert SESSION_START in SESSION_EVENT_TYPES
        assert SESSION_END in SESSION_EVENT_TYPES

    def test_frozenset_is_frozen(self) -> None:
        assert isinstance(SESSION_EVENT_TYPES, frozenset)

    def test_ended_reason_values(self) -> None:
        assert {r.value for r in EndedReason} == {
            "gates_closed",
            "max_l2",
            "no_l2_candidates",
            "l2_plan_completed",
            "max_steps_reached",
        }


class TestSessionEvent:
    """Event envelope validation."""

    def test_event_id_is_generated_ulid(self) -> None:
        event = SessionEvent(type=SESSION_START, step=0, timestamp=_T0)
        assert len(event.event_id) == 26

    def test_event_ids_unique(self) -> None:
        a = SessionEvent(type=SESSION_START, step=0, timestamp=_T0)
        b = SessionEvent(type=SESSION_START, step=0, timestamp=_T0)
        assert a.event_id != b.event_id

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(PydanticValidationError, match="Unknown session event type"):
            SessionEvent(type="card_flipped", step=0, timestamp=_T0)

    def test_negative_step_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            SessionEvent(type=SESSION_START, step=-1, timestamp=_T0)

    def test_frozen(self) -> None:
        event = SessionEvent(type=SESSION_START, step=0, timestamp=_T0)
        with pytest.raises(PydanticValidationError):
            event.step = 3  # type: ignore[misc]

    def test_repr(self) -> None:
        event = SessionEvent(
            type=CARD_SHOWN, step=2, layer=Layer.L1, card_id="L1_mood", timestamp=_T0
        )
        assert repr(event) == "SessionEvent(type=card_shown, step=2, layer=L1, card=L1_mood)"


class TestCreateEvent:
    """Factory dumping typed payloads."""

    def test_payload_dumped_as_json_values(self) -> None:
        event = create_event(
            ANSWER_COMMITTED,
            4,
            AnswerCommittedPayload(choice=Choice.NOT_SURE),
            layer=Layer.L2,
            card_id="L2_heavy",
            timestamp=_T0,
        )
        assert event.payload == {"choice": "NS"}
        assert event.layer is Layer.L2
        assert event.card_id == "L2_heavy"
        assert event.timestamp == _T0

    def test_enum_payload_fields_dumped_as_values(self) -> None:
        event = create_event(
            SESSION_END,
            3,
            SessionEndPayload(
                ended_by=EndedBy.L1,
                ended_reason=EndedReason.GATES_CLOSED,
                asked_l1_count=3,
                asked_l2_count=0,
                evidence_tags_count=12,
                gates_hit_count=6,
            ),
        )
        assert event.payload["ended_by"] == "l1"
        assert event.payload["ended_reason"] == "gates_closed"

    def test_default_timestamp_is_utc(self) -> None:
        event = create_event(
            "gate_hit", 0, GateHitPayload(gate_name="valence", scope=GateScope.ANY)
        )
        assert event.timestamp.tzinfo is not None
        assert event.payload == {"gate_name": "valence", "scope": "any"}


class TestPayloads:
    """Payload field constraints."""

    def test_card_shown_requires_reason(self) -> None:
        with pytest.raises(PydanticValidationError):
            CardShownPayload(card_id="L1_mood", card_title="t", card_type="choice", reason="")

    def test_gate_hit_unknown_scope_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            GateHitPayload(gate_name="valence", scope="baseline_only")  # type: ignore[arg-type]


class TestNormalizeChoice:
    """Choice normalization at the commit boundary."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("A", Choice.A), ("B", Choice.B), ("NS", Choice.NOT_SURE), (Choice.B, Choice.B)],
    )
    def test_known_values(self, raw: object, expected: Choice) -> None:
        assert normalize_choice(raw) is expected  # type: ignore[arg-type]

    def test_unknown_value_raises(self) -> None:
        with pytest.raises(ContractViolationError):
            normalize_choice("maybe")
