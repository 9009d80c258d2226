"""Uniform interface for verification sources and capability providers."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import CapabilityKind, SourceKind, VerificationSource
from truth_engine.schemas.verdict import VerdictFragment


class ProviderOutcome(BaseModel):
    """What a provider reports for one invocation."""

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    fragment: VerdictFragment = Field(default_factory=VerdictFragment)
    evidence: dict[str, Any] = Field(default_factory=dict)


class VerificationProvider(ABC):
    """
    Base class for everything the engine can invoke.

    Subclasses set ``descriptor`` and implement ``verify``. Raising from
    ``verify`` fails only the task (or sub-task) that invoked it.
    """

    descriptor: VerificationSource

    def __init__(self, descriptor: VerificationSource | None = None):
        if descriptor is not None:
            self.descriptor = descriptor
        if getattr(self, "descriptor", None) is None:
            raise ValueError(f"{type(self).__name__} has no source descriptor")

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def capabilities(self) -> frozenset[CapabilityKind]:
        return self.descriptor.capabilities

    @property
    def is_capability_provider(self) -> bool:
        return self.descriptor.kind == SourceKind.CAPABILITY_PROVIDER

    @abstractmethod
    async def verify(
        self, context: ClaimContext, parameters: dict[str, Any]
    ) -> ProviderOutcome:
        """Inspect the claim and report a tier signal."""

    async def health_check(self) -> bool:
        """Run a trivial claim through ``verify``; override with a cheaper ping."""
        await self.verify(ClaimContext(text="health check"), {})
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, tier={int(self.descriptor.tier)})"
