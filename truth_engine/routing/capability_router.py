"""Capability routing: intent and claim context to capability kinds.

Routing is a declarative lookup over explicit capability tags. Every
provider declaring a matched capability takes part (fan-out); there is
no first-match selection.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional

from truth_engine.config.logging import get_logger
from truth_engine.routing.cache import CapabilityCache
from truth_engine.schemas.claim import ClaimContext, ClaimType
from truth_engine.schemas.source import CapabilityKind
from truth_engine.schemas.task import SubResult, TaskStatus
from truth_engine.sources.base import VerificationProvider
from truth_engine.sources.registry import SourceRegistry

CAPABILITY_KEYWORDS: dict[CapabilityKind, tuple[str, ...]] = {
    CapabilityKind.FILE_OPERATIONS: ("file", "read", "write", "save", "attachment"),
    CapabilityKind.DATABASE_QUERY: ("database", "query", "sql", "data"),
    CapabilityKind.WEB_AUTOMATION: ("web", "scrape", "browse", "automation", "website", "link", "url"),
    CapabilityKind.CODE_MANAGEMENT: ("code", "github", "repository", "commit"),
    CapabilityKind.KNOWLEDGE_MANAGEMENT: ("document", "note", "wiki", "knowledge"),
    CapabilityKind.API_OPERATIONS: ("api", "endpoint", "request", "test"),
}

CLAIM_TYPE_CAPABILITIES: dict[ClaimType, frozenset[CapabilityKind]] = {
    ClaimType.WEB: frozenset({CapabilityKind.WEB_AUTOMATION}),
    ClaimType.COMMUNICATION: frozenset({CapabilityKind.KNOWLEDGE_MANAGEMENT}),
    ClaimType.FINANCIAL: frozenset({CapabilityKind.KNOWLEDGE_MANAGEMENT}),
    ClaimType.SCAM_PATTERN: frozenset({CapabilityKind.KNOWLEDGE_MANAGEMENT}),
}

SubResultCallback = Callable[[SubResult], Awaitable[None]]


class CapabilityRouter:
    """
    Maps an intent to capability kinds and runs capability tasks.

    Only kinds with at least one registered provider are returned from
    ``route``; an empty result is valid and simply means no capability
    tasks get planned.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        keywords: Optional[dict[CapabilityKind, tuple[str, ...]]] = None,
        claim_type_capabilities: Optional[dict[ClaimType, frozenset[CapabilityKind]]] = None,
        cache: Optional[CapabilityCache] = None,
    ):
        self.registry = registry
        self.cache = cache if cache is not None else CapabilityCache()
        self.keywords = keywords if keywords is not None else CAPABILITY_KEYWORDS
        self.claim_type_capabilities = (
            claim_type_capabilities
            if claim_type_capabilities is not None
            else CLAIM_TYPE_CAPABILITIES
        )
        self._patterns = {
            kind: re.compile(r"\b(?:" + "|".join(map(re.escape, words)) + r")s?\b")
            for kind, words in self.keywords.items()
            if words
        }
        self.logger = get_logger("CapabilityRouter")

    def route(self, intent: str, context: ClaimContext) -> frozenset[CapabilityKind]:
        """Capability kinds relevant to the intent, restricted to registered ones."""
        lowered = intent.lower()
        matched: set[CapabilityKind] = {
            kind for kind, rx in self._patterns.items() if rx.search(lowered)
        }
        for claim_type in context.claim_types:
            matched |= self.claim_type_capabilities.get(claim_type, frozenset())

        available = set(self.registry.list_capabilities())
        routed = frozenset(matched & available)
        self.logger.debug(
            "Capabilities routed",
            matched=sorted(k.value for k in matched),
            routed=sorted(k.value for k in routed),
        )
        return routed

    def providers_for(self, kind: CapabilityKind) -> list[VerificationProvider]:
        return self.registry.providers_for(kind)

    async def execute(
        self,
        kind: CapabilityKind,
        context: ClaimContext,
        parameters: dict[str, Any],
        providers: Optional[list[str]] = None,
        on_sub_result: Optional[SubResultCallback] = None,
    ) -> list[SubResult]:
        """
        Run every provider of a capability concurrently.

        Args:
            kind: Capability to execute
            context: Claim context shared read-only by providers
            parameters: Invocation parameters passed to each provider
            providers: Optional provider names fixed at planning time
            on_sub_result: Awaited once per provider as each finishes

        Returns:
            One SubResult per provider, in provider order. A failing
            provider yields a failed SubResult; it never raises here.

        A run in which every provider succeeded is cached under the
        capability, the providers, the parameters and the claim; a repeat
        is answered from the cache, still calling ``on_sub_result`` once
        per provider.
        """
        if providers is None:
            targets = self.providers_for(kind)
        else:
            targets = [self.registry.get_provider(name) for name in providers]

        key = self.cache.make_key(kind.value, {
            "parameters": parameters,
            "providers": [p.name for p in targets],
            "claim": context.model_dump(mode="json"),
        })
        cached = self.cache.get(key)
        if cached is not None:
            subs = [s.model_copy(deep=True) for s in cached]
            if on_sub_result is not None:
                for sub in subs:
                    await on_sub_result(sub)
            self.logger.info(f"Capability served from cache: {kind.value}", total=len(subs))
            return subs

        async def run(provider: VerificationProvider) -> SubResult:
            try:
                outcome = await self.registry.invoke(provider.name, context, parameters)
                sub = SubResult(
                    provider=provider.name,
                    status=TaskStatus.COMPLETED,
                    confidence=outcome.confidence,
                    fragment=outcome.fragment,
                    evidence=outcome.evidence,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(
                    f"Capability provider failed: {provider.name}",
                    capability=kind.value,
                    error=str(e),
                )
                sub = SubResult(provider=provider.name, status=TaskStatus.FAILED, error=str(e))
            if on_sub_result is not None:
                await on_sub_result(sub)
            return sub

        results = await asyncio.gather(*(run(p) for p in targets))
        succeeded = sum(1 for r in results if r.status == TaskStatus.COMPLETED)
        self.logger.info(
            f"Capability executed: {kind.value}",
            total=len(results),
            successful=succeeded,
            failed=len(results) - succeeded,
        )
        if results and succeeded == len(results):
            self.cache.set(key, [r.model_copy(deep=True) for r in results])
        return list(results)
