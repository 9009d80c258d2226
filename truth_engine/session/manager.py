"""Streaming session manager.

Owns every session from creation to teardown: runs the verification
pipeline for it, turns engine events into protocol messages, keeps the
state needed for resume, and delivers messages in order to whichever
connection is currently attached.

Delivery is per-session FIFO. Each outbound message is stamped with a
session sequence number before it is put on the attached channel; a
detached session keeps running and keeps its snapshot current but
drops live messages until a connection attaches again.

Usage:
    manager = SessionManager(build_default_registry())
    channel = EventChannel()
    session = await manager.start_text("IRS refund ...", channel=channel)
    message = await channel.get()
"""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

from truth_engine.config.settings import settings
from truth_engine.errors import ExtractionFailure, ProtocolError, SessionTimeout
from truth_engine.execution.engine import (
    ExecutionEngine,
    ExecutionFinished,
    ExecutionTimedOut,
    SubTaskFinished,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
)
from truth_engine.extraction import ExtractionBackend, UnconfiguredExtractionBackend
from truth_engine.followup.questions import FollowUpQuestionGenerator
from truth_engine.planning.context_detector import ContextDetector
from truth_engine.planning.planner import Planner
from truth_engine.routing.capability_router import CapabilityRouter
from truth_engine.schemas.claim import ExtractionResult
from truth_engine.schemas.task import TaskStatus
from truth_engine.schemas.verdict import VerdictRecord, VerdictTag
from truth_engine.session.protocol import (
    CapabilityCompleted,
    CapabilityFailed,
    CapabilitySourceCompleted,
    CapabilitySourceFailed,
    CapabilityStarted,
    ContextDetected,
    EnhancedResult,
    FinalResult,
    FollowUpProcessed,
    FollowUpQuestions,
    OutboundBase,
    SessionSnapshot,
    SessionStatus,
    SourceCompleted,
    SourceFailed,
    SourceStarted,
    StatusUpdate,
    VerificationError,
    VerificationOptions,
    VerificationPlanMessage,
    VerificationStarted,
)
from truth_engine.session.state import Session, SessionStage, verification_progress
from truth_engine.session.store import InMemorySessionStore, SessionStore
from truth_engine.sources.registry import SourceRegistry, build_default_registry
from truth_engine.utils.logging import bind_session_context, get_structured_logger
from truth_engine.verdict.resolver import RECOMMENDATIONS, VerdictResolver, VerdictTracker


class EventChannel:
    """FIFO outbox for one client connection.

    ``deliver`` never blocks, so a slow client cannot stall a session.
    """

    def __init__(self, channel_id: Optional[str] = None):
        self.channel_id = channel_id or str(uuid.uuid4())
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, message: OutboundBase) -> None:
        if not self.closed:
            self._queue.put_nowait(message)

    async def get(self) -> OutboundBase:
        return await self._queue.get()

    def get_nowait(self) -> OutboundBase:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.closed = True


def new_session_id() -> str:
    return f"stream_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SessionManager:
    """
    Creates, runs, resumes and tears down verification sessions.

    Features:
    - Stage machine with monotonic progress per session
    - Ordered delivery to the attached channel
    - Resume with a state snapshot after reconnect
    - Follow-up question round for low-confidence verdicts
    - Retention and expiry of finished or abandoned sessions
    """

    def __init__(
        self,
        registry: Optional[SourceRegistry] = None,
        store: Optional[SessionStore] = None,
        extractor: Optional[ExtractionBackend] = None,
        detector: Optional[ContextDetector] = None,
        planner: Optional[Planner] = None,
        engine: Optional[ExecutionEngine] = None,
        resolver: Optional[VerdictResolver] = None,
        follow_up: Optional[FollowUpQuestionGenerator] = None,
        timeout_seconds: Optional[float] = None,
        answer_window_seconds: Optional[float] = None,
        retention_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry if registry is not None else build_default_registry()
        router = CapabilityRouter(self.registry)
        self.store = store if store is not None else InMemorySessionStore(clock=clock)
        self.extractor = extractor or UnconfiguredExtractionBackend()
        self.detector = detector or ContextDetector()
        self.planner = planner or Planner(self.registry, router)
        self.engine = engine or ExecutionEngine(self.registry, router)
        self.resolver = resolver or VerdictResolver()
        self.follow_up = follow_up or FollowUpQuestionGenerator(self.resolver)
        self.timeout_seconds = timeout_seconds or settings.session_timeout_seconds
        self.answer_window_seconds = answer_window_seconds or settings.answer_window_seconds
        self.retention_seconds = retention_seconds or settings.session_retention_seconds
        self._clock = clock
        self._runners: set[asyncio.Task] = set()
        self._logger = get_structured_logger("SessionManager")
        self._stats = {
            "sessions_started": 0,
            "sessions_completed": 0,
            "manual_reviews": 0,
            "sessions_failed": 0,
            "sessions_cancelled": 0,
            "sessions_expired": 0,
        }

    # ── Session creation ────────────────────────────────────────────

    async def start_text(
        self,
        text: str,
        options: Optional[VerificationOptions] = None,
        channel: Optional[EventChannel] = None,
    ) -> Session:
        options = options or VerificationOptions()

        async def extract() -> ExtractionResult:
            return ExtractionResult(
                text=text,
                confidence=options.extraction_confidence,
                method="direct_text",
            )

        return await self._start("text", options, channel, extract)

    async def start_image(
        self,
        image: bytes,
        filename: Optional[str] = None,
        options: Optional[VerificationOptions] = None,
        channel: Optional[EventChannel] = None,
    ) -> Session:
        options = options or VerificationOptions()

        async def extract() -> ExtractionResult:
            return await self.extractor.extract(image, filename)

        return await self._start("image", options, channel, extract)

    async def _start(
        self,
        source_type: str,
        options: VerificationOptions,
        channel: Optional[EventChannel],
        extract: Callable[[], Awaitable[ExtractionResult]],
    ) -> Session:
        session = Session(
            session_id=new_session_id(),
            source_type=source_type,
            options=options,
            channel=channel,
            started_at=self._clock(),
        )
        await self.store.put(session)
        self._stats["sessions_started"] += 1

        self._emit(session, VerificationStarted(source_type=source_type))
        self._emit_status(session, "Verification started")

        runner = asyncio.create_task(
            self._run(session, extract), name=f"session:{session.session_id}"
        )
        session.runner = runner
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)
        return session

    # ── Pipeline ────────────────────────────────────────────────────

    async def _run(
        self,
        session: Session,
        extract: Callable[[], Awaitable[ExtractionResult]],
    ) -> None:
        log = bind_session_context(self._logger, session.session_id)
        log.info("session_started", source_type=session.source_type)
        try:
            try:
                extraction = await extract()
            except ExtractionFailure as e:
                self._manual_review(session, str(e), e.confidence)
                return

            if extraction.failed:
                self._manual_review(
                    session, extraction.failure_reason or "No text found", extraction.confidence
                )
                return
            if extraction.confidence < settings.extraction_confidence_floor:
                self._manual_review(
                    session,
                    f"Extraction confidence {extraction.confidence:.2f} is below "
                    f"{settings.extraction_confidence_floor:.2f}",
                    extraction.confidence,
                )
                return

            self._advance(session, SessionStage.CONTEXT_DETECTION, "Analyzing claim context")
            context = self.detector.detect(extraction, session.source_type)
            session.context = context
            self._emit(session, ContextDetected(
                claim_types=[t.value for t in context.claim_types],
                entities=[{"type": e.type, "value": e.value} for e in context.entities],
                recency=context.temporal.recency.value,
                strategy=context.strategy,
                extraction_confidence=context.extraction_confidence,
            ))

            self._advance(session, SessionStage.PLANNING, "Planning verification")
            plan = self.planner.plan(context)
            session.plan = plan
            payload = plan.to_message()
            self._emit(session, VerificationPlanMessage(
                sources=payload["sources"],
                capability_tasks=payload["capabilityTasks"],
                estimated_duration=payload["estimatedDuration"],
            ))

            self._advance(session, SessionStage.VERIFICATION, "Running verification sources")
            tracker = VerdictTracker(self.resolver, context.extraction_confidence)
            timed_out = False
            async for event in self.engine.execute(
                plan,
                context,
                timeout_seconds=session.options.timeout_seconds or self.timeout_seconds,
                session_id=session.session_id,
            ):
                if isinstance(event, ExecutionTimedOut):
                    timed_out = True
                elif not isinstance(event, ExecutionFinished):
                    self._on_execution_event(session, event, tracker)

            self._advance(session, SessionStage.FINALIZING, "Resolving verdict")
            results = list(session.results.values())
            if timed_out and not tracker.locked:
                verdict = self._timeout_verdict(session, results)
            else:
                verdict = tracker.finalize(results)
            session.verdict = verdict
            log.info(
                "verdict_resolved",
                verdict=verdict.verdict.value,
                confidence=verdict.confidence,
                timed_out=timed_out,
            )

            # A forced timeout completes with what it has; no answer window
            forced = timed_out and not tracker.locked
            if session.options.ask_follow_up and not forced:
                verdict = await self._follow_up_round(session, verdict)

            self._complete(session, verdict)
        except asyncio.CancelledError:
            if not session.terminal:
                self._fail(session, "Session cancelled", "session_cancelled")
            raise
        except Exception as e:
            log.exception("session_failed", error=str(e))
            if not session.terminal:
                self._fail(session, f"Verification failed: {e}")

    def _on_execution_event(self, session: Session, event: Any, tracker: VerdictTracker) -> None:
        task = event.task
        if isinstance(event, TaskStarted):
            session.results[task.task_id] = event.result
            if task.is_capability:
                self._emit(session, CapabilityStarted(
                    task_id=task.task_id,
                    capability=task.capability.value,
                    providers=list(task.providers),
                ))
            else:
                self._emit(session, SourceStarted(
                    task_id=task.task_id, source=task.name, tier=int(task.tier)
                ))
            return

        if isinstance(event, SubTaskFinished):
            sub = event.sub_result
            if sub.status == TaskStatus.COMPLETED:
                self._emit(session, CapabilitySourceCompleted(
                    task_id=task.task_id,
                    capability=task.capability.value,
                    provider=sub.provider,
                    confidence=sub.confidence,
                ))
            else:
                self._emit(session, CapabilitySourceFailed(
                    task_id=task.task_id,
                    capability=task.capability.value,
                    provider=sub.provider,
                    error=sub.error or "provider failed",
                ))
            return

        result = event.result
        session.results[task.task_id] = result
        live = session.observe_confidence(event.live_confidence)
        tracker.update(result)

        if isinstance(event, TaskCompleted):
            if task.is_capability:
                successful = sum(1 for s in result.sub_results if s.status == TaskStatus.COMPLETED)
                self._emit(session, CapabilityCompleted(
                    task_id=task.task_id,
                    capability=task.capability.value,
                    confidence=result.confidence,
                    live_confidence=live,
                    successful=successful,
                    failed=len(result.sub_results) - successful,
                ))
            else:
                self._emit(session, SourceCompleted(
                    task_id=task.task_id,
                    source=task.name,
                    tier=int(task.tier),
                    confidence=result.confidence,
                    live_confidence=live,
                    evidence=result.evidence,
                ))
        elif isinstance(event, TaskFailed):
            if task.is_capability:
                self._emit(session, CapabilityFailed(
                    task_id=task.task_id,
                    capability=task.capability.value,
                    error=result.error or "capability failed",
                    live_confidence=live,
                ))
            else:
                self._emit(session, SourceFailed(
                    task_id=task.task_id,
                    source=task.name,
                    tier=int(task.tier),
                    error=result.error or "source failed",
                    live_confidence=live,
                ))

        done = session.completed_tasks
        session.raise_progress(verification_progress(done, session.total_tasks))
        self._emit_status(session, f"{done}/{session.total_tasks} sources finished")

    def _timeout_verdict(self, session: Session, results: list) -> VerdictRecord:
        timeout = SessionTimeout(
            session.session_id, session.options.timeout_seconds or self.timeout_seconds
        )
        self._logger.warning(
            "session_timeout",
            session_id=session.session_id,
            live_confidence=session.live_confidence,
            **timeout.to_trace_dict(),
        )
        partial = self.resolver.resolve(results, session.context.extraction_confidence)
        return VerdictRecord(
            verdict=VerdictTag.COMPLETED,
            confidence=round(max(session.live_confidence, settings.fallback_confidence_floor), 4),
            tier=None,
            evidence_summary=partial.evidence_summary,
            recommendations=list(RECOMMENDATIONS[VerdictTag.COMPLETED]),
            method="timeout_recovery",
        )

    async def _follow_up_round(self, session: Session, verdict: VerdictRecord) -> VerdictRecord:
        round_ = self.follow_up.generate(verdict, session.context)
        if round_ is None:
            return verdict

        session.pending_questions = round_
        session.answers = asyncio.get_running_loop().create_future()
        self._advance(session, SessionStage.QUESTIONS, "Waiting for follow-up answers")
        self._emit(session, FollowUpQuestions(
            questions=[q.model_dump() for q in round_.questions],
            uncertainty_level=round_.uncertainty_level,
            explanation=round_.explanation,
            preliminary=_verdict_payload(verdict),
            answer_window_seconds=self.answer_window_seconds,
        ))

        try:
            answers = await asyncio.wait_for(
                asyncio.shield(session.answers), self.answer_window_seconds
            )
        except asyncio.TimeoutError:
            self._logger.info("follow_up_window_elapsed", session_id=session.session_id)
            return verdict
        finally:
            session.pending_questions = None

        self._advance(session, SessionStage.PROCESSING_ANSWERS, "Processing follow-up answers")
        enhanced = self.follow_up.apply_answers(
            verdict,
            answers,
            list(session.results.values()),
            session.context,
        )
        session.context = enhanced.context
        session.verdict = enhanced.verdict
        self._emit(session, FollowUpProcessed(
            confidence_adjustment=enhanced.confidence_adjustment,
            insights=enhanced.insights,
        ))
        self._emit(session, EnhancedResult(
            verdict=enhanced.verdict.verdict.value,
            confidence=enhanced.verdict.confidence,
            explanation=enhanced.verdict.explanation,
            recommendations=enhanced.verdict.recommendations,
            risk_level=enhanced.verdict.risk_level,
        ))
        return enhanced.verdict

    # ── Terminal paths ──────────────────────────────────────────────

    def _complete(self, session: Session, verdict: VerdictRecord) -> None:
        session.verdict = verdict
        self._advance(session, SessionStage.COMPLETED, "Verification complete")
        message = self._final_result(session, verdict)
        session.terminal_message = self._emit(session, message)
        self._schedule_retention(session)
        self._stats["sessions_completed"] += 1

    def _manual_review(self, session: Session, reason: str, confidence: float) -> None:
        verdict = VerdictRecord(
            verdict=VerdictTag.MANUAL_REVIEW_REQUIRED,
            confidence=0.0,
            evidence_summary=[reason],
            recommendations=list(RECOMMENDATIONS[VerdictTag.MANUAL_REVIEW_REQUIRED]),
            method="manual_review",
        )
        session.verdict = verdict
        self._advance(session, SessionStage.MANUAL_REVIEW, "Manual review required")
        session.terminal_message = self._emit(session, self._final_result(session, verdict))
        self._schedule_retention(session)
        self._stats["manual_reviews"] += 1
        self._logger.info(
            "manual_review_required",
            session_id=session.session_id,
            reason=reason,
            extraction_confidence=confidence,
        )

    def _fail(self, session: Session, error: str, code: str = "engine_error") -> None:
        session.advance(SessionStage.ERROR)
        session.terminal_message = self._emit(session, VerificationError(error=error, code=code))
        self._schedule_retention(session)
        self._stats["sessions_failed"] += 1

    def _final_result(self, session: Session, verdict: VerdictRecord) -> FinalResult:
        return FinalResult(
            verdict=verdict.verdict.value,
            confidence=verdict.confidence,
            explanation=verdict.explanation,
            sources=session.result_summaries(),
            recommendations=verdict.recommendations,
            evidence_summary=verdict.evidence_summary,
            risk_level=verdict.risk_level,
            method=verdict.method,
            tier=int(verdict.tier) if verdict.tier is not None else None,
        )

    def _schedule_retention(self, session: Session) -> None:
        session.expires_at = self._clock() + self.retention_seconds

    # ── Delivery ────────────────────────────────────────────────────

    def _advance(self, session: Session, stage: SessionStage, message: str) -> None:
        session.advance(stage)
        self._emit_status(session, message)

    def _emit_status(self, session: Session, message: Optional[str] = None) -> None:
        self._emit(session, StatusUpdate(
            stage=session.stage.value, progress=session.progress, message=message
        ))

    def _emit(self, session: Session, message: OutboundBase) -> OutboundBase:
        stamped = message.model_copy(update={
            "session_id": session.session_id,
            "sequence": session.next_sequence(),
        })
        if session.channel is not None:
            session.channel.deliver(stamped)
        return stamped

    # ── Client operations ───────────────────────────────────────────

    async def get(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise ProtocolError(f"Unknown session: {session_id}")
        return session

    async def attach(self, session_id: str, channel: EventChannel) -> Session:
        """
        Bind a (re)connected channel to a session and bring it up to date.

        The channel first receives a snapshot of the session; a finished
        session is followed immediately by its terminal message, an
        active one by its live events from here on.

        Raises:
            ProtocolError: If the session is unknown or already expired.
        """
        session = await self.get(session_id)
        session.channel = channel

        if not session.terminal:
            session.expires_at = None

        snapshot = SessionSnapshot(
            stage=session.stage.value,
            progress=session.progress,
            live_confidence=session.live_confidence,
            results=session.result_summaries(),
            total_tasks=session.total_tasks,
            pending_questions=(
                [q.model_dump() for q in session.pending_questions.questions]
                if session.pending_questions is not None
                else None
            ),
        )
        self._emit(session, snapshot)
        if session.terminal and session.terminal_message is not None:
            self._emit(session, session.terminal_message)

        self._logger.info(
            "session_resumed",
            session_id=session_id,
            stage=session.stage.value,
            progress=session.progress,
        )
        return session

    async def detach(self, session_id: str, channel: EventChannel) -> None:
        """Unbind a channel after connection loss. Running tasks are not cancelled."""
        session = await self.store.get(session_id)
        if session is None or session.channel is not channel:
            return
        session.channel = None
        if not session.terminal:
            session.expires_at = self._clock() + self.timeout_seconds + self.answer_window_seconds
        self._logger.info("session_detached", session_id=session_id, stage=session.stage.value)

    async def submit_answers(self, session_id: str, answers: dict[str, str]) -> None:
        """
        Deliver follow-up answers to a session waiting for them.

        Raises:
            ProtocolError: If the session is unknown, not waiting for answers,
                or an answer is not one of the offered options.
        """
        session = await self.get(session_id)
        if session.stage != SessionStage.QUESTIONS or session.answers is None or session.answers.done():
            raise ProtocolError(
                f"Session {session_id} is not waiting for follow-up answers",
                "submit_follow_up_answers",
            )
        try:
            self.follow_up.validate_answers(answers)
        except ValueError as e:
            raise ProtocolError(str(e), "submit_follow_up_answers") from None
        session.answers.set_result(dict(answers))

    async def cancel(self, session_id: str) -> OutboundBase:
        """
        Stop a running session at the client's request.

        The session ends with a ``verification_error`` coded
        ``session_cancelled``, which is also returned.

        Raises:
            ProtocolError: If the session is unknown or already finished.
        """
        session = await self.get(session_id)
        if session.terminal:
            raise ProtocolError(
                f"Session {session_id} has already finished", "cancel_verification"
            )
        if session.runner is not None and not session.runner.done():
            session.runner.cancel()
            await asyncio.gather(session.runner, return_exceptions=True)
        # A runner cancelled before its first step never reaches its handler
        if not session.terminal:
            self._fail(session, "Session cancelled", "session_cancelled")
        self._stats["sessions_cancelled"] += 1
        self._logger.info("session_cancelled", session_id=session_id)
        return session.terminal_message

    async def status(self, session_id: str) -> SessionStatus:
        session = await self.get(session_id)
        return SessionStatus(
            session_id=session.session_id,
            stage=session.stage.value,
            progress=session.progress,
            live_confidence=session.live_confidence,
            completed_tasks=session.completed_tasks,
            total_tasks=session.total_tasks,
        )

    async def wait(self, session_id: str) -> OutboundBase:
        """Wait for a session to finish and return its terminal message."""
        session = await self.get(session_id)
        if session.runner is not None:
            await asyncio.wait({session.runner})
        return session.terminal_message

    # ── Lifecycle ───────────────────────────────────────────────────

    async def expire(self, now: Optional[float] = None) -> list[str]:
        """Tear down sessions past their retention or abandonment deadline."""
        expired = await self.store.expire(now)
        for session in expired:
            if session.runner is not None and not session.runner.done():
                session.runner.cancel()
            session.channel = None
        self._stats["sessions_expired"] += len(expired)
        return [s.session_id for s in expired]

    async def run_expiry_loop(self, interval_seconds: float = 30.0) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.expire()

    async def shutdown(self) -> None:
        """Cancel running sessions; each still ends with a terminal message."""
        runners = list(self._runners)
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)
        self._logger.info("session_manager_shutdown", cancelled=len(runners))

    def get_statistics(self) -> dict[str, Any]:
        return {**self._stats, "active_sessions": len(self._runners)}


def _verdict_payload(verdict: VerdictRecord) -> dict[str, Any]:
    return {
        "verdict": verdict.verdict.value,
        "confidence": verdict.confidence,
        "tier": int(verdict.tier) if verdict.tier is not None else None,
        "riskLevel": verdict.risk_level,
    }
