"""Verification sources, capability providers and their registry."""

from truth_engine.sources.base import ProviderOutcome, VerificationProvider
from truth_engine.sources.capabilities import (
    ContactChannelInspector,
    DomainReputationInspector,
    UrlStructureInspector,
)
from truth_engine.sources.heuristics import (
    AuthorityImpersonationCheck,
    BehavioralHeuristics,
    ComplaintDatabaseCheck,
    ScamPatternRecognition,
)
from truth_engine.sources.registry import SourceRegistry, build_default_registry

__all__ = [
    "ProviderOutcome",
    "VerificationProvider",
    "AuthorityImpersonationCheck",
    "ComplaintDatabaseCheck",
    "ScamPatternRecognition",
    "BehavioralHeuristics",
    "UrlStructureInspector",
    "DomainReputationInspector",
    "ContactChannelInspector",
    "SourceRegistry",
    "build_default_registry",
]
