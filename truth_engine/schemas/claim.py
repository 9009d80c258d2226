"""Claim-side schemas: extraction output and the immutable claim context.

A ClaimContext is built once per session by the ContextDetector and is
never mutated. Follow-up answers produce a new, amended context through
``merge_answers``; a context may be amended at most once.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ClaimType(str, Enum):
    """Claim categories recognised by context detection."""

    FINANCIAL = "financial"
    TEMPORAL = "temporal"
    WEB = "web"
    COMMUNICATION = "communication"
    AUTHORITY = "authority"
    PRODUCT = "product"
    NEWS = "news"
    HEALTH = "health"
    CELEBRITY = "celebrity"
    SCAM_PATTERN = "scam_pattern"
    GENERAL = "general"


class Recency(str, Enum):
    """How time-pressured the claim reads."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ExtractionResult(BaseModel):
    """Text plus the confidence of whatever produced it.

    Direct text input has confidence 1.0. Image input carries the
    extraction backend's confidence, which later scales the verdict.
    """

    text: str = Field(default="", description="Extracted or submitted text")
    confidence: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Extraction confidence (0.0-1.0)"
    )
    method: str = Field(default="direct_text", description="Extraction method label")
    failure_reason: Optional[str] = Field(
        default=None, description="Set when extraction failed outright"
    )

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.failure_reason is not None or not self.text.strip()


class Entity(BaseModel):
    """An entity mentioned in the claim text."""

    type: Literal["email", "url", "domain", "organization", "money"]
    value: str

    model_config = {"frozen": True}


class TemporalHint(BaseModel):
    """Time-pressure markers found in the text."""

    recency: Recency = Recency.LOW
    markers: tuple[str, ...] = ()

    model_config = {"frozen": True}


class ClaimContext(BaseModel):
    """Immutable classification of a claim, shared read-only by all tasks."""

    text: str = Field(..., description="Claim text")
    extraction: ExtractionResult = Field(default_factory=ExtractionResult)
    claim_types: tuple[ClaimType, ...] = Field(default=(ClaimType.GENERAL,))
    entities: tuple[Entity, ...] = ()
    temporal: TemporalHint = Field(default_factory=TemporalHint)
    strategy: str = Field(default="general_review", description="Detection strategy label")
    source_type: Literal["text", "image"] = "text"
    answers: dict[str, Any] = Field(
        default_factory=dict, description="Follow-up answers merged into the context"
    )
    amended: bool = False

    model_config = {"frozen": True}

    @property
    def extraction_confidence(self) -> float:
        return self.extraction.confidence

    def has_type(self, claim_type: ClaimType) -> bool:
        return claim_type in self.claim_types

    def entities_of(self, entity_type: str) -> list[str]:
        return [e.value for e in self.entities if e.type == entity_type]

    def merge_answers(self, answers: dict[str, Any]) -> "ClaimContext":
        """Return a copy amended with follow-up answers.

        Raises:
            ValueError: If the context was already amended.
        """
        if self.amended:
            raise ValueError("Claim context was already amended with follow-up answers")
        return self.model_copy(update={"answers": dict(answers), "amended": True})
