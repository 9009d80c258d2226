"""Concurrent plan execution."""

from truth_engine.execution.engine import (
    ExecutionEngine,
    ExecutionEvent,
    ExecutionFinished,
    ExecutionTimedOut,
    LiveConfidence,
    SubTaskFinished,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
)

__all__ = [
    "ExecutionEngine",
    "ExecutionEvent",
    "ExecutionFinished",
    "ExecutionTimedOut",
    "LiveConfidence",
    "SubTaskFinished",
    "TaskCompleted",
    "TaskFailed",
    "TaskStarted",
]
