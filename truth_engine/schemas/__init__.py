"""Shared schemas for claims, sources, tasks and verdicts."""

from truth_engine.schemas.claim import (
    ClaimContext,
    ClaimType,
    Entity,
    ExtractionResult,
    Recency,
    TemporalHint,
)
from truth_engine.schemas.source import (
    TIER_WEIGHTS,
    CapabilityKind,
    SourceKind,
    TrustTier,
    VerificationSource,
)
from truth_engine.schemas.task import PlannedTask, SubResult, TaskResult, TaskStatus
from truth_engine.schemas.verdict import (
    DEFINITIVE_TAGS,
    VerdictFragment,
    VerdictRecord,
    VerdictTag,
)

__all__ = [
    "ClaimContext",
    "ClaimType",
    "Entity",
    "ExtractionResult",
    "Recency",
    "TemporalHint",
    "TIER_WEIGHTS",
    "CapabilityKind",
    "SourceKind",
    "TrustTier",
    "VerificationSource",
    "PlannedTask",
    "SubResult",
    "TaskResult",
    "TaskStatus",
    "DEFINITIVE_TAGS",
    "VerdictFragment",
    "VerdictRecord",
    "VerdictTag",
]
