"""
Engine errors.

Failures are isolated at the narrowest scope that can absorb them:
a task failure stays inside its task, an extraction failure routes a
session to manual review, a protocol error is answered on the
connection without touching session state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class TruthEngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"

    def to_trace_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {"error": self.code, "message": str(self)}


class SourceUnavailable(TruthEngineError):
    """A source or provider name is not present in the registry."""

    code = "source_unavailable"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Verification source not registered: {name}")


@dataclass
class TaskFailure(TruthEngineError):
    """
    A single planned task failed or exceeded its time budget.

    Attributes:
        task_name: Planned task that failed
        reason: Human-readable failure reason
        timed_out: True when the per-task budget elapsed
        details: Additional context for debugging
    """

    task_name: str
    reason: str
    timed_out: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    code = "task_failure"

    def __post_init__(self) -> None:
        super().__init__(f"Task '{self.task_name}' failed: {self.reason}")

    def to_trace_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "task_name": self.task_name,
            "reason": self.reason,
            "timed_out": self.timed_out,
            "details": self.details,
        }


class ExtractionFailure(TruthEngineError):
    """Text extraction failed or produced text too unreliable to verify."""

    code = "extraction_failure"

    def __init__(self, message: str, confidence: float = 0.0):
        self.confidence = confidence
        super().__init__(message)


class SessionTimeout(TruthEngineError):
    """The global session deadline elapsed before all tasks finished."""

    code = "session_timeout"

    def __init__(self, session_id: str, timeout_seconds: float):
        self.session_id = session_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Session {session_id} exceeded {timeout_seconds:.1f}s verification budget"
        )


class ProtocolError(TruthEngineError):
    """A client message was malformed, unknown, or referenced an unknown session."""

    code = "protocol_error"

    def __init__(self, message: str, message_type: str | None = None):
        self.message_type = message_type
        super().__init__(message)


class ConnectionLoss(TruthEngineError):
    """The client connection dropped while a session was active."""

    code = "connection_loss"

    def __init__(self, reason: str = "connection closed"):
        self.reason = reason
        super().__init__(reason)


__all__ = [
    "TruthEngineError",
    "SourceUnavailable",
    "TaskFailure",
    "ExtractionFailure",
    "SessionTimeout",
    "ProtocolError",
    "ConnectionLoss",
]
