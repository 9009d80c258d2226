"""Tests for tiered verdict resolution.

Tests cover:
- Tier-1 short-circuit over any lower-tier evidence
- Tier-2 agreement counting
- Tier-3 category threshold and extraction gate
- Tier-4 indicator threshold
- INCONCLUSIVE fallback and the extraction multiplier
- Incremental tracking with the tier-1 lock
"""

from typing import Optional

import pytest

from truth_engine.config.settings import settings
from truth_engine.schemas.source import SourceKind, TrustTier
from truth_engine.schemas.task import TaskResult, TaskStatus
from truth_engine.schemas.verdict import VerdictFragment, VerdictTag
from truth_engine.verdict.resolver import (
    VerdictResolver,
    VerdictTracker,
    extraction_multiplier,
    risk_level,
)


# ── Helpers ───────────────────────────────────────────────────────────────

_counter = iter(range(1, 10_000))


def _make_result(
    name: str,
    tier: TrustTier,
    fragment: Optional[VerdictFragment] = None,
    confidence: float = 0.5,
    error: Optional[str] = None,
) -> TaskResult:
    result = TaskResult(
        task_id=f"task-{next(_counter)}",
        source_name=name,
        kind=SourceKind.TRADITIONAL,
        tier=tier,
    )
    result.mark_running()
    if error is not None:
        result.mark_failed(error)
    else:
        result.mark_completed(confidence, fragment or VerdictFragment())
    return result


def _definitive(tag: VerdictTag = VerdictTag.DEFINITE_SCAM) -> VerdictFragment:
    return VerdictFragment(verdict=tag, definitive=True)


def _categories(*names: str) -> VerdictFragment:
    return VerdictFragment(verdict=VerdictTag.LIKELY_SCAM, pattern_categories=names)


def _indicators(*names: str) -> VerdictFragment:
    return VerdictFragment(verdict=VerdictTag.SUSPICIOUS, risk_indicators=names)


# ── Tier Tests ───────────────────────────────────────────────────────────


class TestTierResolution:
    def test_tier1_short_circuits_lower_tiers(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("behavior", TrustTier.TIER_4, _indicators("a", "b", "c")),
            _make_result("patterns", TrustTier.TIER_3, _categories("x", "y", "z")),
            _make_result("authority", TrustTier.TIER_1, _definitive()),
        ])

        assert record.verdict == VerdictTag.DEFINITE_SCAM
        assert record.tier == TrustTier.TIER_1
        assert record.confidence == 1.0
        assert record.risk_level == "HIGH_RISK"

    def test_tier1_legitimate(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("registry", TrustTier.TIER_1, _definitive(VerdictTag.LEGITIMATE)),
            _make_result("behavior", TrustTier.TIER_4, _indicators("a", "b")),
        ])
        assert record.verdict == VerdictTag.LEGITIMATE
        assert record.risk_level == "LOW_RISK"

    def test_non_definitive_tier1_is_skipped(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("authority", TrustTier.TIER_1, VerdictFragment()),
            _make_result("behavior", TrustTier.TIER_4, _indicators("a", "b")),
        ])
        assert record.verdict == VerdictTag.SUSPICIOUS
        assert record.tier == TrustTier.TIER_4

    def test_tier2_counts_corroborating_databases(self) -> None:
        fragment = VerdictFragment(
            verdict=VerdictTag.SCAM, corroborating_sources=("BBB Scam Tracker", "IC3")
        )
        record = VerdictResolver().resolve([_make_result("complaints", TrustTier.TIER_2, fragment)])

        assert record.verdict == VerdictTag.SCAM
        assert record.tier == TrustTier.TIER_2
        assert record.confidence == 0.95
        assert "tier 2: reported by BBB Scam Tracker, IC3" in record.evidence_summary

    def test_tier2_single_source_is_not_enough(self) -> None:
        fragment = VerdictFragment(verdict=VerdictTag.SCAM, corroborating_sources=("IC3",))
        record = VerdictResolver().resolve([_make_result("complaints", TrustTier.TIER_2, fragment)])
        assert record.verdict == VerdictTag.INCONCLUSIVE

    def test_tier2_independent_sources_agree(self) -> None:
        fragment = VerdictFragment(verdict=VerdictTag.SCAM)
        record = VerdictResolver().resolve([
            _make_result("bbb", TrustTier.TIER_2, fragment),
            _make_result("ftc", TrustTier.TIER_2, fragment),
        ])
        assert record.verdict == VerdictTag.SCAM

    def test_three_pattern_categories_give_likely_scam(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("patterns", TrustTier.TIER_3, _categories("lottery", "urgency", "financial_lure")),
        ])
        assert record.verdict == VerdictTag.LIKELY_SCAM
        assert record.confidence == 0.85

    def test_categories_are_counted_across_results(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("p1", TrustTier.TIER_3, _categories("lottery", "urgency")),
            _make_result("p2", TrustTier.TIER_3, _categories("urgency", "phishing")),
        ])
        assert record.verdict == VerdictTag.LIKELY_SCAM

    def test_tier3_needs_adequate_extraction(self) -> None:
        record = VerdictResolver().resolve(
            [_make_result("patterns", TrustTier.TIER_3, _categories("a", "b", "c"))],
            extraction_confidence=0.7,
        )
        assert record.verdict == VerdictTag.INCONCLUSIVE

    def test_tier4_two_indicators(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("behavior", TrustTier.TIER_4, _indicators("secrecy_request")),
            _make_result("inspector", TrustTier.TIER_4, _indicators("insecure_link")),
        ])
        assert record.verdict == VerdictTag.SUSPICIOUS
        assert record.confidence == 0.6
        assert record.risk_level == "MEDIUM_RISK"

    def test_nothing_sufficient_is_inconclusive_at_floor(self) -> None:
        record = VerdictResolver().resolve([
            _make_result("behavior", TrustTier.TIER_4, _indicators("one")),
            _make_result("broken", TrustTier.TIER_2, error="timeout"),
        ])
        assert record.verdict == VerdictTag.INCONCLUSIVE
        assert record.confidence == settings.inconclusive_confidence
        assert record.confidence <= settings.fallback_confidence_floor
        assert record.tier is None
        assert "broken failed: timeout" in record.evidence_summary

    def test_failed_results_never_decide(self) -> None:
        result = _make_result("authority", TrustTier.TIER_1, error="offline")
        assert result.status == TaskStatus.FAILED
        assert VerdictResolver().resolve([result]).verdict == VerdictTag.INCONCLUSIVE

    def test_resolve_accepts_generators(self) -> None:
        results = [_make_result("authority", TrustTier.TIER_1, _definitive())]
        record = VerdictResolver().resolve(r for r in results)
        assert record.verdict == VerdictTag.DEFINITE_SCAM


# ── Confidence Scaling Tests ─────────────────────────────────────────────


class TestConfidenceScaling:
    @pytest.mark.parametrize(
        "extraction,expected",
        [(1.0, 1.0), (0.8, 1.0), (0.6, 0.75), (0.4, 0.5), (0.0, 0.0)],
    )
    def test_extraction_multiplier(self, extraction: float, expected: float) -> None:
        assert extraction_multiplier(extraction) == pytest.approx(expected)

    def test_multiplier_scales_tier1(self) -> None:
        record = VerdictResolver().resolve(
            [_make_result("authority", TrustTier.TIER_1, _definitive())],
            extraction_confidence=0.6,
        )
        assert record.confidence == 0.75
        assert record.risk_level == "MEDIUM_RISK"

    def test_risk_levels(self) -> None:
        assert risk_level(VerdictTag.SCAM, 0.95) == "HIGH_RISK"
        assert risk_level(VerdictTag.LIKELY_SCAM, 0.85) == "MEDIUM_RISK"
        assert risk_level(VerdictTag.INCONCLUSIVE, 0.1) == "UNKNOWN"


# ── Tracker Tests ────────────────────────────────────────────────────────


class TestVerdictTracker:
    def test_tier1_locks_verdict(self) -> None:
        tracker = VerdictTracker(VerdictResolver())
        tracker.update(_make_result("behavior", TrustTier.TIER_4, _indicators("a", "b")))
        assert tracker.current.verdict == VerdictTag.SUSPICIOUS
        assert not tracker.locked

        tracker.update(_make_result("authority", TrustTier.TIER_1, _definitive()))
        assert tracker.locked

        after = tracker.update(
            _make_result("registry", TrustTier.TIER_1, _definitive(VerdictTag.LEGITIMATE))
        )
        assert after.verdict == VerdictTag.DEFINITE_SCAM
        assert tracker.finalize([]).verdict == VerdictTag.DEFINITE_SCAM

    def test_finalize_without_lock_recomputes(self) -> None:
        tracker = VerdictTracker(VerdictResolver())
        tracker.update(_make_result("behavior", TrustTier.TIER_4, _indicators("a")))
        final = tracker.finalize([
            _make_result("behavior", TrustTier.TIER_4, _indicators("a", "b")),
        ])
        assert final.verdict == VerdictTag.SUSPICIOUS
