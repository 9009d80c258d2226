"""Tiered verdict resolution.

Tiers are consulted strictly in order and resolution stops at the first
tier whose evidence is sufficient:

1. Tier 1: any definitive fraud or legitimacy signal.
2. Tier 2: enough independent complaint sources agreeing on one verdict.
3. Tier 3: enough distinct pattern categories, with clean extraction.
4. Tier 4: enough distinct behavioral risk indicators.
5. Otherwise INCONCLUSIVE at the configured floor.

The tier confidence is then scaled by an extraction-quality multiplier,
``min(1, extraction_confidence / extraction_adequate_confidence)``.
"""

from typing import Iterable, Optional

import structlog

from truth_engine.config.settings import settings
from truth_engine.schemas.source import TrustTier
from truth_engine.schemas.task import TaskResult, TaskStatus
from truth_engine.schemas.verdict import (
    DEFINITIVE_TAGS,
    VerdictFragment,
    VerdictRecord,
    VerdictTag,
)

RECOMMENDATIONS: dict[VerdictTag, list[str]] = {
    VerdictTag.DEFINITE_SCAM: [
        "Do not respond, click links or send money",
        "Report it to the FTC at reportfraud.ftc.gov",
        "Forward phishing email to spam@uce.gov",
        "Block the sender",
    ],
    VerdictTag.SCAM: [
        "Do not respond or send money",
        "Check the complaint databases that recorded this scheme",
        "Report it to the FTC at reportfraud.ftc.gov",
    ],
    VerdictTag.LIKELY_SCAM: [
        "Treat this message as fraudulent unless independently confirmed",
        "Contact the organisation through its official website or phone number",
        "Never share personal or banking information in reply",
    ],
    VerdictTag.SUSPICIOUS: [
        "Verify the sender through an independent channel",
        "Be wary of pressure to act quickly",
    ],
    VerdictTag.LEGITIMATE: [
        "The message matches an authoritative source",
        "Stay cautious with links and attachments all the same",
    ],
    VerdictTag.INCONCLUSIVE: [
        "Not enough evidence either way; verify through official channels",
    ],
    VerdictTag.COMPLETED: [
        "Verification ran out of time; treat the result as preliminary",
    ],
    VerdictTag.MANUAL_REVIEW_REQUIRED: [
        "Text could not be read reliably; upload a clearer image or paste the text",
        "Have a person review the original content",
    ],
}


def extraction_multiplier(extraction_confidence: float) -> float:
    adequate = settings.extraction_adequate_confidence
    return max(0.0, min(1.0, extraction_confidence / adequate))


def risk_level(verdict: VerdictTag, confidence: float) -> str:
    if verdict.is_scam and confidence > 0.9:
        return "HIGH_RISK"
    if verdict.is_scam:
        return "MEDIUM_RISK"
    if verdict is VerdictTag.SUSPICIOUS:
        return "MEDIUM_RISK"
    if verdict is VerdictTag.LEGITIMATE:
        return "LOW_RISK"
    return "UNKNOWN"


class VerdictResolver:
    """Stateless resolution of task results into a VerdictRecord."""

    def __init__(
        self,
        tier2_min_agreeing: Optional[int] = None,
        tier3_min_categories: Optional[int] = None,
        tier4_min_indicators: Optional[int] = None,
        inconclusive_confidence: Optional[float] = None,
    ) -> None:
        self.tier2_min_agreeing = tier2_min_agreeing or settings.tier2_min_agreeing
        self.tier3_min_categories = tier3_min_categories or settings.tier3_min_pattern_categories
        self.tier4_min_indicators = tier4_min_indicators or settings.tier4_min_risk_indicators
        self.inconclusive_confidence = (
            settings.inconclusive_confidence
            if inconclusive_confidence is None
            else inconclusive_confidence
        )
        self._logger = structlog.get_logger().bind(component="VerdictResolver")

    def resolve(
        self,
        results: Iterable[TaskResult],
        extraction_confidence: float = 1.0,
    ) -> VerdictRecord:
        results = list(results)
        completed = [
            r for r in results
            if r.status == TaskStatus.COMPLETED and r.fragment is not None
        ]
        failed = [r for r in results if r.status == TaskStatus.FAILED]
        by_tier: dict[TrustTier, list[TaskResult]] = {tier: [] for tier in TrustTier}
        for r in completed:
            by_tier[r.tier].append(r)

        summary = self._evidence_summary(by_tier, failed)
        decided = (
            self._tier1(by_tier[TrustTier.TIER_1])
            or self._tier2(by_tier[TrustTier.TIER_2])
            or self._tier3(by_tier[TrustTier.TIER_3], extraction_confidence)
            or self._tier4(by_tier[TrustTier.TIER_4])
        )
        if decided is None:
            verdict, tier, base = VerdictTag.INCONCLUSIVE, None, self.inconclusive_confidence
        else:
            verdict, tier = decided
            base = tier.weight

        confidence = round(base * extraction_multiplier(extraction_confidence), 4)
        record = VerdictRecord(
            verdict=verdict,
            confidence=confidence,
            tier=tier,
            evidence_summary=summary,
            recommendations=list(RECOMMENDATIONS[verdict]),
            risk_level=risk_level(verdict, confidence),
        )
        self._logger.debug(
            "verdict_resolved",
            verdict=verdict.value,
            tier=int(tier) if tier else None,
            confidence=confidence,
        )
        return record

    @staticmethod
    def _tier1(results: list[TaskResult]) -> Optional[tuple[VerdictTag, TrustTier]]:
        for r in results:
            fragment = r.fragment
            if fragment.definitive and fragment.verdict in DEFINITIVE_TAGS:
                return fragment.verdict, TrustTier.TIER_1
        return None

    def _tier2(self, results: list[TaskResult]) -> Optional[tuple[VerdictTag, TrustTier]]:
        # verdict -> independent sources that back it
        backing: dict[VerdictTag, set[str]] = {}
        for r in results:
            if r.fragment.verdict is None:
                continue
            sources = backing.setdefault(r.fragment.verdict, set())
            if r.fragment.corroborating_sources:
                sources.update(r.fragment.corroborating_sources)
            else:
                sources.add(r.source_name)
        for verdict, sources in backing.items():
            if len(sources) >= self.tier2_min_agreeing:
                return verdict, TrustTier.TIER_2
        return None

    def _tier3(
        self, results: list[TaskResult], extraction_confidence: float
    ) -> Optional[tuple[VerdictTag, TrustTier]]:
        categories = {c for r in results for c in r.fragment.pattern_categories}
        if (
            len(categories) >= self.tier3_min_categories
            and extraction_confidence >= settings.extraction_adequate_confidence
        ):
            return VerdictTag.LIKELY_SCAM, TrustTier.TIER_3
        return None

    def _tier4(self, results: list[TaskResult]) -> Optional[tuple[VerdictTag, TrustTier]]:
        indicators = {i for r in results for i in r.fragment.risk_indicators}
        if len(indicators) >= self.tier4_min_indicators:
            return VerdictTag.SUSPICIOUS, TrustTier.TIER_4
        return None

    @staticmethod
    def _evidence_summary(
        by_tier: dict[TrustTier, list[TaskResult]], failed: list[TaskResult]
    ) -> list[str]:
        summary: list[str] = []
        for tier, results in by_tier.items():
            merged = VerdictFragment()
            for r in results:
                merged = merged.merged(r.fragment)
            if merged.definitive and merged.verdict:
                summary.append(f"tier {int(tier)}: definitive {merged.verdict.value}")
            if merged.corroborating_sources:
                summary.append(
                    f"tier {int(tier)}: reported by {', '.join(merged.corroborating_sources)}"
                )
            if merged.pattern_categories:
                summary.append(
                    f"tier {int(tier)}: patterns {', '.join(merged.pattern_categories)}"
                )
            if merged.risk_indicators:
                summary.append(
                    f"tier {int(tier)}: indicators {', '.join(merged.risk_indicators)}"
                )
        for r in failed:
            summary.append(f"{r.source_name} failed: {r.error}")
        return summary


class VerdictTracker:
    """Incremental resolution over a growing result set.

    Recomputes after every result until a tier-1 verdict appears; after
    that the verdict is locked and later results are ignored.
    """

    def __init__(self, resolver: VerdictResolver, extraction_confidence: float = 1.0):
        self.resolver = resolver
        self.extraction_confidence = extraction_confidence
        self._results: dict[str, TaskResult] = {}
        self._current: Optional[VerdictRecord] = None
        self._locked = False

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def current(self) -> Optional[VerdictRecord]:
        return self._current

    def update(self, result: TaskResult) -> VerdictRecord:
        if self._locked:
            return self._current
        self._results[result.task_id] = result
        self._current = self.resolver.resolve(self._results.values(), self.extraction_confidence)
        if self._current.tier == TrustTier.TIER_1:
            self._locked = True
        return self._current

    def finalize(self, results: Iterable[TaskResult]) -> VerdictRecord:
        """Final verdict over the complete result set, honouring a lock."""
        if self._locked:
            return self._current
        self._current = self.resolver.resolve(list(results), self.extraction_confidence)
        return self._current
