"""Planned tasks and their results.

A TaskResult moves pending -> running -> completed | failed exactly once.
The transition helpers enforce that; the Execution Engine is the only
caller.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from truth_engine.schemas.source import CapabilityKind, SourceKind, TrustTier
from truth_engine.schemas.verdict import VerdictFragment


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class PlannedTask(BaseModel):
    """A source (or capability kind) bound to parameters and an execution priority."""

    task_id: str = Field(..., description="Unique within the plan")
    name: str = Field(..., description="Source name, or capability kind for capability tasks")
    kind: SourceKind
    tier: TrustTier
    priority: int = Field(..., ge=1, description="Higher runs first in the plan listing")
    expected_duration: float = Field(..., gt=0, description="Seconds")
    parameters: dict[str, Any] = Field(default_factory=dict)
    capability: Optional[CapabilityKind] = None
    providers: tuple[str, ...] = Field(
        default=(), description="Provider names fanned out for a capability task"
    )

    model_config = {"frozen": True}

    @property
    def is_capability(self) -> bool:
        return self.kind == SourceKind.CAPABILITY_PROVIDER


class SubResult(BaseModel):
    """One provider's outcome under a capability task."""

    provider: str
    status: TaskStatus
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    fragment: Optional[VerdictFragment] = None
    evidence: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class TaskResult(BaseModel):
    """Mutable outcome of one PlannedTask."""

    task_id: str
    source_name: str
    kind: SourceKind
    tier: TrustTier
    status: TaskStatus = TaskStatus.PENDING
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    fragment: Optional[VerdictFragment] = None
    evidence: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    sub_results: list[SubResult] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def pending(cls, task: PlannedTask) -> "TaskResult":
        return cls(task_id=task.task_id, source_name=task.name, kind=task.kind, tier=task.tier)

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def mark_running(self) -> None:
        if self.status != TaskStatus.PENDING:
            raise ValueError(f"Task {self.task_id} cannot start from {self.status.value}")
        self.status = TaskStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)

    def mark_completed(
        self,
        confidence: float,
        fragment: Optional[VerdictFragment],
        evidence: Optional[dict[str, Any]] = None,
    ) -> None:
        self._finish(TaskStatus.COMPLETED)
        self.confidence = max(0.0, min(1.0, confidence))
        self.fragment = fragment
        self.evidence = evidence or {}

    def mark_failed(self, error: str) -> None:
        self._finish(TaskStatus.FAILED)
        self.error = error

    def _finish(self, status: TaskStatus) -> None:
        if self.status.terminal:
            raise ValueError(
                f"Task {self.task_id} already reached terminal state {self.status.value}"
            )
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        if self.started_at is None:
            self.started_at = self.finished_at

    def summary(self) -> dict[str, Any]:
        """Wire-friendly summary used in protocol messages and snapshots."""
        return {
            "taskId": self.task_id,
            "source": self.source_name,
            "kind": self.kind.value,
            "tier": int(self.tier),
            "status": self.status.value,
            "confidence": round(self.confidence, 4),
            "error": self.error,
            "subResults": [
                {"provider": s.provider, "status": s.status.value,
                 "confidence": round(s.confidence, 4), "error": s.error}
                for s in self.sub_results
            ],
        }
