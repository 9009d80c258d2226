"""Session stage machine and the per-session record.

Valid paths:

    initializing -> context_detection -> planning -> verification -> finalizing -> completed
    finalizing -> questions -> processing_answers -> completed
    questions -> completed                    (answer window elapsed)
    initializing -> manual_review             (extraction unusable)
    any non-terminal stage -> error

Progress is tied to the stage and never decreases.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.task import TaskResult, TaskStatus
from truth_engine.schemas.verdict import VerdictRecord
from truth_engine.session.protocol import VerificationOptions


class SessionStage(str, Enum):
    INITIALIZING = "initializing"
    CONTEXT_DETECTION = "context_detection"
    PLANNING = "planning"
    VERIFICATION = "verification"
    FINALIZING = "finalizing"
    QUESTIONS = "questions"
    PROCESSING_ANSWERS = "processing_answers"
    COMPLETED = "completed"
    MANUAL_REVIEW = "manual_review"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STAGES


TERMINAL_STAGES = frozenset({
    SessionStage.COMPLETED,
    SessionStage.MANUAL_REVIEW,
    SessionStage.ERROR,
})

ALLOWED_TRANSITIONS: dict[SessionStage, frozenset[SessionStage]] = {
    SessionStage.INITIALIZING: frozenset({SessionStage.CONTEXT_DETECTION, SessionStage.MANUAL_REVIEW}),
    SessionStage.CONTEXT_DETECTION: frozenset({SessionStage.PLANNING}),
    SessionStage.PLANNING: frozenset({SessionStage.VERIFICATION}),
    SessionStage.VERIFICATION: frozenset({SessionStage.FINALIZING}),
    SessionStage.FINALIZING: frozenset({SessionStage.COMPLETED, SessionStage.QUESTIONS}),
    SessionStage.QUESTIONS: frozenset({SessionStage.PROCESSING_ANSWERS, SessionStage.COMPLETED}),
    SessionStage.PROCESSING_ANSWERS: frozenset({SessionStage.COMPLETED}),
    SessionStage.COMPLETED: frozenset(),
    SessionStage.MANUAL_REVIEW: frozenset(),
    SessionStage.ERROR: frozenset(),
}

STAGE_PROGRESS: dict[SessionStage, int] = {
    SessionStage.INITIALIZING: 0,
    SessionStage.CONTEXT_DETECTION: 10,
    SessionStage.PLANNING: 20,
    SessionStage.VERIFICATION: 30,
    SessionStage.FINALIZING: 90,
    SessionStage.QUESTIONS: 92,
    SessionStage.PROCESSING_ANSWERS: 95,
    SessionStage.COMPLETED: 100,
    SessionStage.MANUAL_REVIEW: 100,
}

VERIFICATION_SPAN = (30, 80)


class InvalidTransition(ValueError):
    """A stage change not allowed by the stage machine."""

    def __init__(self, current: SessionStage, target: SessionStage):
        self.current = current
        self.target = target
        super().__init__(f"Invalid session transition {current.value} -> {target.value}")


def can_transition(current: SessionStage, target: SessionStage) -> bool:
    if target == SessionStage.ERROR:
        return not current.terminal
    return target in ALLOWED_TRANSITIONS[current]


def verification_progress(completed: int, total: int) -> int:
    low, high = VERIFICATION_SPAN
    if total <= 0:
        return high
    return low + int(completed / total * (high - low))


@dataclass
class Session:
    """Server-side state of one verification session.

    Written only by the SessionManager.
    """

    session_id: str
    source_type: str = "text"
    options: VerificationOptions = field(default_factory=VerificationOptions)
    stage: SessionStage = SessionStage.INITIALIZING
    progress: int = 0
    sequence: int = 0
    context: Optional[ClaimContext] = None
    plan: Any = None
    results: dict[str, TaskResult] = field(default_factory=dict)
    live_confidence: float = 0.0
    verdict: Optional[VerdictRecord] = None
    terminal_message: Any = None
    pending_questions: Any = None
    channel: Any = None
    started_at: float = field(default_factory=time.monotonic)
    expires_at: Optional[float] = None
    runner: Optional[asyncio.Task] = None
    answers: Optional[asyncio.Future] = None

    @property
    def terminal(self) -> bool:
        return self.stage.terminal

    def advance(self, target: SessionStage) -> None:
        """Move to ``target`` and raise progress to the stage's floor."""
        if not can_transition(self.stage, target):
            raise InvalidTransition(self.stage, target)
        self.stage = target
        if target in STAGE_PROGRESS:
            self.raise_progress(STAGE_PROGRESS[target])

    def raise_progress(self, value: int) -> int:
        self.progress = max(self.progress, min(100, value))
        return self.progress

    def observe_confidence(self, value: float) -> float:
        self.live_confidence = max(self.live_confidence, value)
        return self.live_confidence

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence

    @property
    def completed_tasks(self) -> int:
        return sum(1 for r in self.results.values() if r.status.terminal)

    @property
    def total_tasks(self) -> int:
        return len(self.plan) if self.plan is not None else 0

    def result_summaries(self) -> list[dict[str, Any]]:
        return [r.summary() for r in self.results.values() if r.status != TaskStatus.PENDING]
