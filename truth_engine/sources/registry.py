"""Source registry for discovery, capability-based lookup and source health."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from truth_engine.config.logging import get_logger
from truth_engine.config.settings import settings
from truth_engine.errors import SourceUnavailable
from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import CapabilityKind, SourceKind, VerificationSource
from truth_engine.sources.base import ProviderOutcome, VerificationProvider
from truth_engine.sources.capabilities import default_capability_providers
from truth_engine.sources.heuristics import default_traditional_sources


@dataclass
class SourceStats:
    """Request accounting for one registered source."""

    requests: int = 0
    errors: int = 0
    total_duration: float = 0.0
    last_error: Optional[str] = None
    last_request_at: Optional[float] = None

    @property
    def error_rate(self) -> float:
        return self.errors / self.requests if self.requests else 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.requests if self.requests else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "errors": self.errors,
            "error_rate": round(self.error_rate, 4),
            "average_duration": round(self.average_duration, 4),
            "last_error": self.last_error,
        }


class SourceRegistry:
    """
    Catalog of verification sources and capability providers.

    Populated once at startup and then frozen; lookups after that are
    read-only, so no locking is needed around them. Per-source request
    counters keep changing after the freeze.

    Features:
    - Registration in a stable order
    - Capability index (capability -> provider names)
    - Lookup by name with SourceUnavailable on miss
    - Request and error accounting per source
    - Health checks and statistics for monitoring
    """

    def __init__(self):
        self._sources: Dict[str, VerificationSource] = {}
        self._providers: Dict[str, VerificationProvider] = {}
        self._capability_index: Dict[CapabilityKind, List[str]] = {}
        self._stats: Dict[str, SourceStats] = {}
        self._frozen = False
        self.logger = get_logger("SourceRegistry")

    def register(
        self,
        provider: VerificationProvider,
        descriptor: Optional[VerificationSource] = None,
    ) -> VerificationSource:
        """
        Register a provider under its descriptor name.

        Args:
            provider: The provider implementation
            descriptor: Optional descriptor overriding the provider's own; it
                must keep the provider's name

        Returns:
            The registered descriptor

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If the name is taken, differs from the provider's, or a
                capability provider declares no capability
        """
        if self._frozen:
            raise RuntimeError("Source registry is frozen; register sources before startup")

        descriptor = descriptor or provider.descriptor
        if descriptor.name != provider.name:
            raise ValueError(
                f"Descriptor name {descriptor.name} does not match provider {provider.name}"
            )
        if descriptor.name in self._sources:
            raise ValueError(f"Source already registered: {descriptor.name}")
        if descriptor.kind == SourceKind.CAPABILITY_PROVIDER and not descriptor.capabilities:
            raise ValueError(f"Capability provider {descriptor.name} declares no capabilities")

        self._sources[descriptor.name] = descriptor
        self._providers[descriptor.name] = provider
        self._stats[descriptor.name] = SourceStats()
        for capability in descriptor.capabilities:
            self._capability_index.setdefault(capability, []).append(descriptor.name)

        self.logger.info(
            f"Source registered: {descriptor.name}",
            tier=int(descriptor.tier),
            kind=descriptor.kind.value,
            capabilities=sorted(c.value for c in descriptor.capabilities),
        )
        return descriptor

    def freeze(self) -> None:
        self._frozen = True
        self.logger.info("Source registry frozen", sources=len(self._sources))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list_sources(self, kind: Optional[SourceKind] = None) -> tuple[VerificationSource, ...]:
        """All descriptors in registration order, optionally filtered by kind."""
        return tuple(
            s for s in self._sources.values() if kind is None or s.kind == kind
        )

    def list_capabilities(self) -> Dict[CapabilityKind, int]:
        """Capability kinds with the number of providers declaring each."""
        return {kind: len(names) for kind, names in self._capability_index.items()}

    def get_source(self, name: str) -> VerificationSource:
        try:
            return self._sources[name]
        except KeyError:
            raise SourceUnavailable(name) from None

    def get_provider(self, name: str) -> VerificationProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise SourceUnavailable(name) from None

    def providers_for(self, capability: CapabilityKind) -> List[VerificationProvider]:
        """Every provider declaring the capability, in registration order."""
        return [self._providers[n] for n in self._capability_index.get(capability, [])]

    async def invoke(
        self, name: str, context: ClaimContext, parameters: Dict[str, Any]
    ) -> ProviderOutcome:
        """
        Run one provider and account for the request.

        Exceptions from the provider propagate unchanged after being
        counted. A cancelled invocation (a task budget running out) also
        counts as an error.

        Raises:
            SourceUnavailable: If no provider is registered under the name
        """
        provider = self.get_provider(name)
        stats = self._stats[name]
        stats.requests += 1
        stats.last_request_at = time.time()
        started = time.monotonic()
        try:
            outcome = await provider.verify(context, parameters)
        except asyncio.CancelledError:
            self._record_error(stats, "cancelled", started)
            raise
        except Exception as e:
            self._record_error(stats, str(e) or type(e).__name__, started)
            raise
        stats.total_duration += time.monotonic() - started
        return outcome

    @staticmethod
    def _record_error(stats: SourceStats, error: str, started: float) -> None:
        stats.errors += 1
        stats.last_error = error
        stats.total_duration += time.monotonic() - started

    def get_source_stats(self, name: str) -> SourceStats:
        try:
            return self._stats[name]
        except KeyError:
            raise SourceUnavailable(name) from None

    async def health_check(self, timeout: Optional[float] = None) -> Dict[str, Dict[str, Any]]:
        """
        Check every registered provider concurrently.

        Returns:
            Source name -> report with ``healthy``, ``error`` (when unhealthy),
            reliability and the request counters
        """
        budget = timeout or settings.health_check_timeout_seconds

        async def check(name: str, provider: VerificationProvider) -> Dict[str, Any]:
            report: Dict[str, Any] = {"healthy": True, "error": None}
            try:
                report["healthy"] = bool(await asyncio.wait_for(provider.health_check(), budget))
            except asyncio.TimeoutError:
                report.update(healthy=False, error=f"no answer within {budget:.1f}s")
            except Exception as e:
                report.update(healthy=False, error=str(e) or type(e).__name__)
            if not report["healthy"]:
                self.logger.warning(f"Source unhealthy: {name}", error=report["error"])
            report["reliability"] = self._sources[name].reliability
            report.update(self._stats[name].to_dict())
            return report

        names = list(self._providers)
        reports = await asyncio.gather(*(check(n, self._providers[n]) for n in names))
        return dict(zip(names, reports))

    def get_statistics(self) -> Dict[str, Any]:
        by_tier: Dict[int, int] = {}
        for source in self._sources.values():
            by_tier[int(source.tier)] = by_tier.get(int(source.tier), 0) + 1
        return {
            "total_sources": len(self._sources),
            "traditional": len(self.list_sources(SourceKind.TRADITIONAL)),
            "capability_providers": len(self.list_sources(SourceKind.CAPABILITY_PROVIDER)),
            "by_tier": by_tier,
            "capabilities": {k.value: v for k, v in self.list_capabilities().items()},
            "total_requests": sum(s.requests for s in self._stats.values()),
            "total_errors": sum(s.errors for s in self._stats.values()),
            "sources": {name: stats.to_dict() for name, stats in self._stats.items()},
            "frozen": self._frozen,
        }

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, name: object) -> bool:
        return name in self._sources


def build_default_registry(
    extra_providers: Optional[List[VerificationProvider]] = None,
) -> SourceRegistry:
    """Registry with the built-in offline sources, frozen and ready to serve."""
    registry = SourceRegistry()
    for provider in [
        *default_traditional_sources(),
        *default_capability_providers(),
        *(extra_providers or []),
    ]:
        registry.register(provider)
    registry.freeze()
    return registry
