"""Tests for protocol message parsing and wire format."""

import json

import pytest

from truth_engine.errors import ProtocolError
from truth_engine.session.protocol import (
    CancelVerification,
    FinalResult,
    Ping,
    StartTextVerification,
    StatusUpdate,
    SubmitFollowUpAnswers,
    parse_inbound,
    parse_outbound,
)


class TestParseInbound:
    def test_start_text_with_camel_case_options(self) -> None:
        message = parse_inbound(json.dumps({
            "type": "start_text_verification",
            "text": "You won!",
            "options": {"askFollowUp": False, "timeoutSeconds": 5},
        }))
        assert isinstance(message, StartTextVerification)
        assert message.options.ask_follow_up is False
        assert message.options.timeout_seconds == 5

    def test_submit_answers(self) -> None:
        message = parse_inbound({
            "type": "submit_follow_up_answers",
            "sessionId": "stream_1_abc",
            "answers": {"payment_request": "yes"},
        })
        assert isinstance(message, SubmitFollowUpAnswers)
        assert message.session_id == "stream_1_abc"

    def test_cancel_verification(self) -> None:
        message = parse_inbound('{"type": "cancel_verification", "sessionId": "stream_1_abc"}')
        assert isinstance(message, CancelVerification)
        assert message.session_id == "stream_1_abc"

    def test_cancel_without_session_id_rejected(self) -> None:
        with pytest.raises(ProtocolError):
            parse_inbound({"type": "cancel_verification"})

    def test_ping(self) -> None:
        assert isinstance(parse_inbound('{"type": "ping"}'), Ping)

    def test_invalid_json(self) -> None:
        with pytest.raises(ProtocolError, match="Invalid JSON"):
            parse_inbound("{not json")

    def test_non_object(self) -> None:
        with pytest.raises(ProtocolError, match="JSON object"):
            parse_inbound("[1, 2]")

    def test_missing_type(self) -> None:
        with pytest.raises(ProtocolError, match="missing a 'type'"):
            parse_inbound({"text": "hi"})

    def test_unknown_type(self) -> None:
        with pytest.raises(ProtocolError, match="Unknown message type: cancel_everything") as exc:
            parse_inbound({"type": "cancel_everything"})
        assert exc.value.message_type == "cancel_everything"

    def test_invalid_fields(self) -> None:
        with pytest.raises(ProtocolError, match="Invalid start_text_verification message"):
            parse_inbound({"type": "start_text_verification", "text": ""})

    def test_timeout_above_limit_rejected(self) -> None:
        with pytest.raises(ProtocolError):
            parse_inbound({
                "type": "start_text_verification",
                "text": "x",
                "options": {"timeoutSeconds": 500},
            })


class TestOutbound:
    def test_wire_format_is_camel_case_without_nulls(self) -> None:
        wire = StatusUpdate(session_id="s1", sequence=3, stage="planning", progress=20).to_wire()
        assert wire["type"] == "status_update"
        assert wire["sessionId"] == "s1"
        assert wire["sequence"] == 3
        assert "message" not in wire
        assert "timestamp" in wire

    def test_round_trip_final_result(self) -> None:
        original = FinalResult(
            session_id="s1",
            verdict="LIKELY_SCAM",
            confidence=0.85,
            explanation="e",
            sources=[],
            risk_level="MEDIUM_RISK",
            tier=3,
        )
        parsed = parse_outbound(json.dumps(original.to_wire()))
        assert isinstance(parsed, FinalResult)
        assert parsed.evidence_summary == []
        assert parsed.tier == 3

    def test_unknown_outbound_type(self) -> None:
        with pytest.raises(ProtocolError):
            parse_outbound({"type": "mystery"})
