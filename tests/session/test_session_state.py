"""Tests for the session stage machine, the session store and image payload decoding."""

import base64

import pytest

from truth_engine.errors import ProtocolError
from truth_engine.extraction import MAX_IMAGE_BYTES, decode_image_payload
from truth_engine.session.state import (
    InvalidTransition,
    Session,
    SessionStage,
    can_transition,
    verification_progress,
)
from truth_engine.session.store import InMemorySessionStore


# ── Stage Machine Tests ──────────────────────────────────────────────────


class TestStageMachine:
    def test_happy_path(self) -> None:
        session = Session(session_id="s1")
        seen = []
        for stage in (
            SessionStage.CONTEXT_DETECTION,
            SessionStage.PLANNING,
            SessionStage.VERIFICATION,
            SessionStage.FINALIZING,
            SessionStage.QUESTIONS,
            SessionStage.PROCESSING_ANSWERS,
            SessionStage.COMPLETED,
        ):
            session.advance(stage)
            seen.append(session.progress)

        assert seen == [10, 20, 30, 90, 92, 95, 100]
        assert session.terminal

    def test_skipping_a_stage_is_rejected(self) -> None:
        session = Session(session_id="s1")
        with pytest.raises(InvalidTransition) as exc:
            session.advance(SessionStage.VERIFICATION)
        assert exc.value.current == SessionStage.INITIALIZING
        assert session.stage == SessionStage.INITIALIZING

    def test_manual_review_only_from_initializing(self) -> None:
        assert can_transition(SessionStage.INITIALIZING, SessionStage.MANUAL_REVIEW)
        assert not can_transition(SessionStage.VERIFICATION, SessionStage.MANUAL_REVIEW)

    def test_error_from_any_active_stage(self) -> None:
        for stage in SessionStage:
            assert can_transition(stage, SessionStage.ERROR) is (not stage.terminal)

    def test_terminal_stages_are_final(self) -> None:
        session = Session(session_id="s1")
        session.advance(SessionStage.MANUAL_REVIEW)
        with pytest.raises(InvalidTransition):
            session.advance(SessionStage.ERROR)

    def test_progress_never_decreases(self) -> None:
        session = Session(session_id="s1")
        session.raise_progress(55)
        session.raise_progress(40)
        assert session.progress == 55
        session.advance(SessionStage.CONTEXT_DETECTION)
        assert session.progress == 55

    def test_verification_progress_span(self) -> None:
        assert verification_progress(0, 4) == 30
        assert verification_progress(2, 4) == 55
        assert verification_progress(4, 4) == 80
        assert verification_progress(0, 0) == 80

    def test_sequence_increments(self) -> None:
        session = Session(session_id="s1")
        assert [session.next_sequence() for _ in range(3)] == [1, 2, 3]


# ── Store Tests ──────────────────────────────────────────────────────────


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self) -> None:
        store = InMemorySessionStore()
        session = Session(session_id="s1")
        await store.put(session)
        assert await store.get("s1") is session
        assert await store.get("missing") is None
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_expire_removes_only_due_sessions(self) -> None:
        store = InMemorySessionStore(clock=lambda: 100.0)
        await store.put(Session(session_id="due", expires_at=99.0))
        await store.put(Session(session_id="later", expires_at=150.0))
        await store.put(Session(session_id="active"))

        expired = await store.expire()

        assert [s.session_id for s in expired] == ["due"]
        assert {s.session_id for s in await store.all()} == {"later", "active"}

    @pytest.mark.asyncio
    async def test_expire_with_explicit_time(self) -> None:
        store = InMemorySessionStore(clock=lambda: 0.0)
        await store.put(Session(session_id="s", expires_at=10.0))
        assert await store.expire(now=5.0) == []
        assert [s.session_id for s in await store.expire(now=10.0)] == ["s"]


# ── Image Payload Tests ──────────────────────────────────────────────────


class TestDecodeImagePayload:
    def test_plain_base64(self) -> None:
        assert decode_image_payload(base64.b64encode(b"\x89PNG").decode()) == b"\x89PNG"

    def test_data_url_prefix(self) -> None:
        payload = "data:image/png;base64," + base64.b64encode(b"img").decode()
        assert decode_image_payload(payload) == b"img"

    def test_invalid_base64(self) -> None:
        with pytest.raises(ProtocolError, match="not valid base64"):
            decode_image_payload("***")

    def test_empty_image(self) -> None:
        with pytest.raises(ProtocolError, match="empty"):
            decode_image_payload("data:image/png;base64,")

    def test_oversized_image(self) -> None:
        payload = base64.b64encode(b"\0" * (MAX_IMAGE_BYTES + 1)).decode()
        with pytest.raises(ProtocolError, match="exceeds"):
            decode_image_payload(payload)
