"""Tests for the WebSocket server.

Tests cover:
- Health endpoint
- Connection handshake
- Full text verification over the socket
- Ping/pong and status queries
- Protocol errors for bad frames and unknown sessions
- Cancelling a running session
- Source health report
"""

import asyncio
import base64
from typing import Any

from fastapi.testclient import TestClient

from truth_engine import __version__
from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import SourceKind, TrustTier, VerificationSource
from truth_engine.server.app import SERVER_CAPABILITIES, create_app
from truth_engine.session.manager import SessionManager
from truth_engine.sources.base import ProviderOutcome, VerificationProvider
from truth_engine.sources.registry import SourceRegistry

IRS_MESSAGE = (
    "This is the IRS. Your tax refund is on hold. "
    "Reply to irs.refund.dept@gmail.com within 24 hours."
)
TERMINAL = {"final_result", "verification_error"}


# ── Helpers ───────────────────────────────────────────────────────────────


def _receive_until(ws, message_type: str, limit: int = 100) -> list[dict]:
    messages = []
    for _ in range(limit):
        message = ws.receive_json()
        messages.append(message)
        if message["type"] == message_type:
            return messages
    raise AssertionError(f"No {message_type} message within {limit} frames")


def _handshake(ws) -> dict:
    message = ws.receive_json()
    assert message["type"] == "connection_established"
    return message


class HungProvider(VerificationProvider):
    descriptor = VerificationSource(
        name="hung_source",
        tier=TrustTier.TIER_4,
        reliability=0.5,
        expected_duration=30.0,
        kind=SourceKind.TRADITIONAL,
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        await asyncio.sleep(60)
        return ProviderOutcome(confidence=0.1)


def _hung_registry() -> SourceRegistry:
    registry = SourceRegistry()
    registry.register(HungProvider())
    registry.freeze()
    return registry


# ── HTTP Tests ───────────────────────────────────────────────────────────


class TestHealth:
    def test_health_reports_sources_and_sessions(self) -> None:
        with TestClient(create_app()) as client:
            response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == __version__
        assert body["connections"] == 0
        assert body["sessions"]["sessions_started"] == 0
        assert body["sources"]["total_sources"] > 0
        assert body["sources"]["total_requests"] == 0

    def test_source_health(self) -> None:
        with TestClient(create_app()) as client:
            response = client.get("/health/sources")

        assert response.status_code == 200
        body = response.json()
        assert body["unhealthy"] == 0
        assert body["healthy"] == len(body["sources"]) == 7
        assert body["sources"]["behavioral_heuristics"]["healthy"] is True


# ── WebSocket Tests ──────────────────────────────────────────────────────


class TestVerificationSocket:
    def test_handshake(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                hello = _handshake(ws)

        assert hello["clientId"].startswith("client_")
        assert hello["capabilities"] == SERVER_CAPABILITIES
        assert hello["serverVersion"] == __version__

    def test_text_verification_runs_to_final_result(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "start_text_verification", "text": IRS_MESSAGE})
                messages = _receive_until(ws, "final_result")

        assert messages[0]["type"] == "verification_started"
        session_id = messages[0]["sessionId"]
        assert all(m["sessionId"] == session_id for m in messages)
        sequences = [m["sequence"] for m in messages]
        assert sequences == list(range(1, len(messages) + 1))

        final = messages[-1]
        assert final["verdict"] == "DEFINITE_SCAM"
        assert final["confidence"] == 1.0
        assert final["riskLevel"] == "HIGH_RISK"

    def test_ping_pong(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "ping"})
                assert ws.receive_json()["type"] == "pong"

    def test_status_query(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({
                    "type": "start_text_verification",
                    "text": IRS_MESSAGE,
                    "options": {"askFollowUp": False},
                })
                final = _receive_until(ws, "final_result")[-1]

                ws.send_json({"type": "get_session_status", "sessionId": final["sessionId"]})
                status = ws.receive_json()

        assert status["type"] == "session_status"
        assert status["stage"] == "completed"
        assert status["progress"] == 100

    def test_invalid_json_gets_protocol_error(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_text("{not json")
                error = ws.receive_json()

                # Connection stays usable
                ws.send_json({"type": "ping"})
                assert ws.receive_json()["type"] == "pong"

        assert error["type"] == "protocol_error"
        assert "Invalid JSON" in error["error"]

    def test_unknown_message_type(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "cancel_everything"})
                error = ws.receive_json()

        assert error["type"] == "protocol_error"
        assert error["messageType"] == "cancel_everything"

    def test_resume_unknown_session(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "resume_session", "sessionId": "stream_0_missing"})
                error = ws.receive_json()

        assert error["type"] == "protocol_error"
        assert "Unknown session" in error["error"]

    def test_resume_on_new_connection_replays_terminal_result(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "start_text_verification", "text": IRS_MESSAGE})
                final = _receive_until(ws, "final_result")[-1]

            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "resume_session", "sessionId": final["sessionId"]})
                snapshot = ws.receive_json()
                replayed = ws.receive_json()

        assert snapshot["type"] == "session_snapshot"
        assert snapshot["progress"] == 100
        assert final["sequence"] < snapshot["sequence"] < replayed["sequence"]
        unstamped = {k: v for k, v in replayed.items() if k != "sequence"}
        assert unstamped == {k: v for k, v in final.items() if k != "sequence"}

    def test_cancel_running_session(self) -> None:
        manager = SessionManager(registry=_hung_registry())
        with TestClient(create_app(manager)) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "start_text_verification", "text": "hello there"})
                started = _receive_until(ws, "source_started")
                session_id = started[0]["sessionId"]

                ws.send_json({"type": "cancel_verification", "sessionId": session_id})
                error = _receive_until(ws, "verification_error")[-1]

        assert error["sessionId"] == session_id
        assert error["code"] == "session_cancelled"

    def test_cancel_session_of_another_connection_rejected(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "start_text_verification", "text": IRS_MESSAGE})
                final = _receive_until(ws, "final_result")[-1]

            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "cancel_verification", "sessionId": final["sessionId"]})
                error = ws.receive_json()

        assert error["type"] == "protocol_error"
        assert error["messageType"] == "cancel_verification"
        assert "Unknown session" in error["error"]

    def test_image_without_extractor_needs_manual_review(self) -> None:
        payload = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
        with TestClient(create_app(SessionManager())) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({
                    "type": "start_image_verification",
                    "imageBuffer": payload,
                    "filename": "shot.png",
                })
                final = _receive_until(ws, "final_result")[-1]

        assert final["verdict"] == "MANUAL_REVIEW_REQUIRED"

    def test_bad_image_payload(self) -> None:
        with TestClient(create_app()) as client:
            with client.websocket_connect("/ws/verification") as ws:
                _handshake(ws)
                ws.send_json({"type": "start_image_verification", "imageBuffer": "***"})
                error = ws.receive_json()

        assert error["type"] == "protocol_error"
        assert "base64" in error["error"]
