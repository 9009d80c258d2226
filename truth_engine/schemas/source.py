"""Verification source descriptors and the trust-tier hierarchy."""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field

from truth_engine.schemas.claim import ClaimContext, ClaimType


class TrustTier(IntEnum):
    """Ordinal trust rank of a source. Lower number wins.

    TIER_1: Authoritative / regulatory checks. A definitive signal ends resolution.
    TIER_2: Complaint databases. Needs independent agreement.
    TIER_3: Pattern recognition. Needs several categories and clean extraction.
    TIER_4: Behavioral heuristics. Weakest; needs several risk indicators.
    """

    TIER_1 = 1
    TIER_2 = 2
    TIER_3 = 3
    TIER_4 = 4

    @property
    def weight(self) -> float:
        return TIER_WEIGHTS[self]

    @property
    def label(self) -> str:
        return TIER_LABELS[self]


TIER_WEIGHTS: dict[TrustTier, float] = {
    TrustTier.TIER_1: 1.0,
    TrustTier.TIER_2: 0.95,
    TrustTier.TIER_3: 0.85,
    TrustTier.TIER_4: 0.60,
}

TIER_LABELS: dict[TrustTier, str] = {
    TrustTier.TIER_1: "authoritative",
    TrustTier.TIER_2: "complaint_database",
    TrustTier.TIER_3: "pattern_recognition",
    TrustTier.TIER_4: "behavioral_heuristics",
}


class SourceKind(str, Enum):
    TRADITIONAL = "traditional"
    CAPABILITY_PROVIDER = "capability_provider"


class CapabilityKind(str, Enum):
    """Capabilities a provider can declare. Routing matches on these tags only."""

    FILE_OPERATIONS = "file_operations"
    CODE_MANAGEMENT = "code_management"
    WEB_AUTOMATION = "web_automation"
    DATABASE_QUERY = "database_query"
    KNOWLEDGE_MANAGEMENT = "knowledge_management"
    API_OPERATIONS = "api_operations"


class VerificationSource(BaseModel):
    """Static description of a registered source or capability provider."""

    name: str = Field(..., min_length=1, description="Unique registry name")
    tier: TrustTier = Field(..., description="Trust tier of results from this source")
    reliability: float = Field(..., ge=0.0, le=1.0, description="Reliability weight")
    expected_duration: float = Field(
        ..., gt=0, description="Expected run time in seconds"
    )
    kind: SourceKind = SourceKind.TRADITIONAL
    capabilities: frozenset[CapabilityKind] = Field(
        default_factory=frozenset,
        description="Declared capabilities (capability providers only)",
    )
    claim_types: frozenset[ClaimType] = Field(
        default_factory=frozenset,
        description="Claim types this source applies to; empty means all",
    )
    description: str = ""

    model_config = {"frozen": True}

    def applies_to(self, context: ClaimContext) -> bool:
        if not self.claim_types:
            return True
        return any(t in self.claim_types for t in context.claim_types)
