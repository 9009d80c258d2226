"""Verdict schemas: per-result tier signals and the resolved verdict record."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from truth_engine.schemas.source import TrustTier


class VerdictTag(str, Enum):
    """Outcome labels, from most to least committal.

    DEFINITE_SCAM: Tier-1 definitive fraud signal.
    SCAM: Fraud corroborated by independent complaint databases.
    LEGITIMATE: Tier-1 definitive legitimacy signal.
    LIKELY_SCAM: Pattern evidence across several categories.
    SUSPICIOUS: Behavioral risk indicators only.
    INCONCLUSIVE: No tier produced enough evidence.
    COMPLETED: Non-committal result forced by the global timeout.
    MANUAL_REVIEW_REQUIRED: Extraction too unreliable for automated verification.
    """

    DEFINITE_SCAM = "DEFINITE_SCAM"
    SCAM = "SCAM"
    LEGITIMATE = "LEGITIMATE"
    LIKELY_SCAM = "LIKELY_SCAM"
    SUSPICIOUS = "SUSPICIOUS"
    INCONCLUSIVE = "INCONCLUSIVE"
    COMPLETED = "COMPLETED"
    MANUAL_REVIEW_REQUIRED = "MANUAL_REVIEW_REQUIRED"

    @property
    def is_scam(self) -> bool:
        return self in (VerdictTag.DEFINITE_SCAM, VerdictTag.SCAM, VerdictTag.LIKELY_SCAM)

    @property
    def is_risky(self) -> bool:
        return self.is_scam or self is VerdictTag.SUSPICIOUS


DEFINITIVE_TAGS = frozenset({VerdictTag.DEFINITE_SCAM, VerdictTag.LEGITIMATE})


class VerdictFragment(BaseModel):
    """The tier-relevant signal carried by one task or provider result.

    Which fields matter depends on the tier that produced it: tier 1
    reads ``definitive``, tier 2 reads ``verdict`` and
    ``corroborating_sources``, tier 3 reads ``pattern_categories``,
    tier 4 reads ``risk_indicators``.
    """

    verdict: Optional[VerdictTag] = None
    definitive: bool = False
    corroborating_sources: tuple[str, ...] = ()
    pattern_categories: tuple[str, ...] = ()
    risk_indicators: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    model_config = {"frozen": True}

    def merged(self, other: "VerdictFragment") -> "VerdictFragment":
        """Union of two fragments; a definitive verdict on either side wins."""
        if other.definitive and not self.definitive:
            verdict, definitive = other.verdict, True
        else:
            verdict, definitive = self.verdict or other.verdict, self.definitive
        return VerdictFragment(
            verdict=verdict,
            definitive=definitive,
            corroborating_sources=_union(self.corroborating_sources, other.corroborating_sources),
            pattern_categories=_union(self.pattern_categories, other.pattern_categories),
            risk_indicators=_union(self.risk_indicators, other.risk_indicators),
            notes=self.notes + other.notes,
        )


def _union(left: tuple[str, ...], right: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(left + right))


class VerdictRecord(BaseModel):
    """The resolved, terminal verdict for a session."""

    verdict: VerdictTag = Field(..., description="Verdict label")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Verdict confidence")
    tier: Optional[TrustTier] = Field(
        default=None, description="Tier that decided the verdict, if any"
    )
    evidence_summary: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    risk_level: str = Field(default="UNKNOWN", description="HIGH_RISK, MEDIUM_RISK, LOW_RISK or UNKNOWN")
    method: str = Field(default="tiered_resolution", description="How the verdict was produced")

    model_config = {"frozen": True}

    @property
    def explanation(self) -> str:
        if self.tier is not None:
            head = f"{self.verdict.value} decided at tier {int(self.tier)} ({self.tier.label})"
        else:
            head = f"{self.verdict.value} ({self.method})"
        if self.evidence_summary:
            return head + ": " + "; ".join(self.evidence_summary)
        return head
