"""Resilient WebSocket client for the verification server.

Starts one verification, follows its event stream, answers follow-up
questions through an optional callback, and survives connection loss by
reconnecting with exponential backoff (tenacity) and resuming the session
by id. When the reconnect ceiling is reached the session is completed locally
so a caller is never left waiting.

Usage:
    client = VerificationClient("ws://127.0.0.1:8765/ws/verification")
    final = await client.verify_text("Your IRS refund is waiting ...")
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from truth_engine.client.reconnect import ReconnectState, reconnect_wait
from truth_engine.config.settings import settings
from truth_engine.errors import ConnectionLoss, ProtocolError
from truth_engine.schemas.verdict import VerdictTag
from truth_engine.session.protocol import (
    TERMINAL_MESSAGE_TYPES,
    FinalResult,
    FollowUpQuestions,
    OutboundBase,
    Ping,
    ResumeSession,
    StartImageVerification,
    StartTextVerification,
    SubmitFollowUpAnswers,
    VerificationOptions,
    WireModel,
    parse_outbound,
)

AnswerProvider = Callable[[FollowUpQuestions], Awaitable[Optional[dict[str, str]]]]
MessageHandler = Callable[[OutboundBase], Awaitable[None]]

CONNECTION_ERRORS = (OSError, ConnectionClosed, InvalidHandshake, ConnectionLoss)


class VerificationClient:
    """Client side of one verification session at a time."""

    def __init__(
        self,
        url: str,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        answer_provider: Optional[AnswerProvider] = None,
        on_message: Optional[MessageHandler] = None,
        keepalive_interval: Optional[float] = None,
        policy: Optional[ReconnectState] = None,
    ):
        """
        Args:
            url: Server WebSocket URL.
            connect: Factory returning an async context manager connection.
            sleep: Awaitable used between reconnect attempts.
            answer_provider: Called with a follow-up round; returns answers or None.
            on_message: Called with every server message in order.
            keepalive_interval: Seconds between pings (defaults to settings).
            policy: Initial reconnect state carrying the attempt ceiling and delays.
        """
        self.url = url
        self._connect = connect
        self._sleep = sleep
        self.answer_provider = answer_provider
        self.on_message = on_message
        self.keepalive_interval = keepalive_interval or settings.keepalive_interval_seconds
        self.policy = policy or ReconnectState()

        self.session_id: Optional[str] = None
        self.progress = 0
        self.live_confidence = 0.0
        self.last_sequence: Optional[int] = None
        self.reconnect = self.policy
        self._logger = structlog.get_logger().bind(component="VerificationClient")

    # ── Public API ──────────────────────────────────────────────────

    async def verify_text(
        self, text: str, options: Optional[VerificationOptions] = None
    ) -> OutboundBase:
        """Verify a text claim and return its final_result or verification_error."""
        start = StartTextVerification(text=text, options=options or VerificationOptions())
        return await self.run(start)

    async def verify_image(
        self,
        image_buffer: str,
        filename: Optional[str] = None,
        options: Optional[VerificationOptions] = None,
    ) -> OutboundBase:
        start = StartImageVerification(
            image_buffer=image_buffer,
            filename=filename,
            options=options or VerificationOptions(),
        )
        return await self.run(start)

    async def run(self, start: WireModel) -> OutboundBase:
        """Drive one session to its terminal message across reconnects."""
        self.session_id = None
        self.progress = 0
        self.live_confidence = 0.0
        self.last_sequence = None
        self.reconnect = self.policy

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts + 1),
            wait=reconnect_wait(self.policy.base_delay, self.policy.max_delay),
            retry=retry_if_exception_type(CONNECTION_ERRORS),
            sleep=self._sleep,
            before_sleep=self._on_connection_lost,
            retry_error_callback=self._on_gave_up,
        )
        async for attempt in retrying:
            with attempt:
                terminal = await self._session_connection(start, attempt.retry_state)
                self.reconnect = self.reconnect.on_closed()
                return terminal

        return self._force_complete(self.reconnect.last_error or "connection lost")

    def _on_connection_lost(self, retry_state: RetryCallState) -> None:
        reason = _failure_reason(retry_state)
        self.reconnect = self.reconnect.on_attempt_failed(reason)
        self._logger.warning(
            "connection_lost",
            reason=reason,
            attempts=self.reconnect.attempts,
            delay=self.reconnect.next_delay(),
            session_id=self.session_id,
        )

    def _on_gave_up(self, retry_state: RetryCallState) -> None:
        self.reconnect = self.reconnect.on_gave_up(_failure_reason(retry_state))

    def _on_session_alive(self, retry_state: RetryCallState) -> None:
        self.reconnect = self.reconnect.on_session_alive()
        # The attempt ceiling counts failures since the session was last alive
        retry_state.attempt_number = 1

    # ── Connection ──────────────────────────────────────────────────

    async def _session_connection(
        self, start: WireModel, retry_state: RetryCallState
    ) -> OutboundBase:
        async with self._connect(self.url) as ws:
            self.reconnect = self.reconnect.on_connected()
            resuming = self.session_id is not None
            if resuming:
                await self._send(ws, ResumeSession(session_id=self.session_id))
            else:
                await self._send(ws, start)

            alive = False
            keepalive = asyncio.create_task(self._keepalive(ws))
            try:
                async for raw in ws:
                    message = parse_outbound(raw)
                    if message.type == "protocol_error":
                        if resuming:
                            # Session expired or unknown on the server
                            return self._force_complete(message.error)
                        raise ProtocolError(message.error, message.message_type)
                    if message.type == "session_snapshot":
                        resuming = False
                    if message.type == "server_shutdown":
                        raise ConnectionLoss("server shutting down")

                    if not self._accept(message):
                        continue
                    if not alive and message.session_id is not None:
                        alive = True
                        self._on_session_alive(retry_state)
                    if self.on_message is not None:
                        await self.on_message(message)

                    if message.type in TERMINAL_MESSAGE_TYPES:
                        return message
                    if isinstance(message, FollowUpQuestions):
                        await self._answer(ws, message)
            finally:
                keepalive.cancel()
                await asyncio.gather(keepalive, return_exceptions=True)

        raise ConnectionLoss("connection closed before a terminal message")

    def _accept(self, message: OutboundBase) -> bool:
        """Track session id, sequence, progress; drop stale duplicates."""
        if message.session_id is None:
            return True
        if self.session_id is None:
            self.session_id = message.session_id
        elif message.session_id != self.session_id:
            return False

        if message.sequence is not None:
            if self.last_sequence is not None and message.sequence <= self.last_sequence:
                return False
            self.last_sequence = message.sequence

        progress = getattr(message, "progress", None)
        if progress is not None:
            self.progress = max(self.progress, progress)
        live = getattr(message, "live_confidence", None)
        if live is not None:
            self.live_confidence = max(self.live_confidence, live)
        return True

    async def _answer(self, ws: Any, round_: FollowUpQuestions) -> None:
        if self.answer_provider is None:
            return
        answers = await self.answer_provider(round_)
        if answers:
            await self._send(ws, SubmitFollowUpAnswers(session_id=self.session_id, answers=answers))

    async def _keepalive(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            await self._send(ws, Ping())

    @staticmethod
    async def _send(ws: Any, message: WireModel) -> None:
        await ws.send(json.dumps(message.to_wire()))

    # ── Degraded completion ─────────────────────────────────────────

    def _force_complete(self, reason: str) -> FinalResult:
        self._logger.error(
            "session_force_completed",
            session_id=self.session_id,
            reason=reason,
            attempts=self.reconnect.attempts,
        )
        return FinalResult(
            session_id=self.session_id,
            verdict=VerdictTag.COMPLETED.value,
            confidence=round(max(self.live_confidence, settings.fallback_confidence_floor), 4),
            explanation=f"Connection to the verification server was lost: {reason}",
            sources=[],
            recommendations=["Retry the verification when the connection is restored"],
            evidence_summary=[f"Connection lost after progress {self.progress}%"],
            risk_level="UNKNOWN",
            method="connection_lost",
        )


def _failure_reason(retry_state: RetryCallState) -> str:
    error = retry_state.outcome.exception()
    return str(error) or type(error).__name__
