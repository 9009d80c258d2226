"""Tests for the follow-up question round.

Tests cover:
- When questions are asked and how many
- Question ordering by weight
- Answer validation
- Re-resolution with answer-derived indicators and signed adjustments
"""

import pytest

from truth_engine.followup.questions import ANSWER_SOURCE, FollowUpQuestionGenerator
from truth_engine.schemas.claim import ClaimContext, ClaimType, Entity, ExtractionResult
from truth_engine.schemas.source import SourceKind, TrustTier
from truth_engine.schemas.task import TaskResult
from truth_engine.schemas.verdict import VerdictFragment, VerdictRecord, VerdictTag


# ── Helpers ───────────────────────────────────────────────────────────────


def _make_context(extraction_confidence: float = 1.0, source_type: str = "text") -> ClaimContext:
    return ClaimContext(
        text="Send a payment to claim your refund, reply to agent@gmail.com",
        extraction=ExtractionResult(text="x", confidence=extraction_confidence),
        claim_types=(ClaimType.FINANCIAL, ClaimType.COMMUNICATION),
        entities=(Entity(type="email", value="agent@gmail.com"),),
        source_type=source_type,
    )


def _make_verdict(
    tag: VerdictTag = VerdictTag.SUSPICIOUS,
    confidence: float = 0.6,
    tier: TrustTier = TrustTier.TIER_4,
) -> VerdictRecord:
    return VerdictRecord(verdict=tag, confidence=confidence, tier=tier)


def _make_result(*indicators: str) -> TaskResult:
    result = TaskResult(
        task_id="task-1",
        source_name="behavioral_heuristics",
        kind=SourceKind.TRADITIONAL,
        tier=TrustTier.TIER_4,
    )
    result.mark_running()
    result.mark_completed(0.6, VerdictFragment(risk_indicators=indicators))
    return result


# ── Generation Tests ─────────────────────────────────────────────────────


class TestGenerate:
    def test_confident_verdict_gets_no_questions(self) -> None:
        generator = FollowUpQuestionGenerator()
        assert generator.generate(_make_verdict(confidence=0.9), _make_context()) is None

    def test_manual_review_gets_no_questions(self) -> None:
        verdict = _make_verdict(VerdictTag.MANUAL_REVIEW_REQUIRED, 0.0, None)
        assert FollowUpQuestionGenerator().generate(verdict, _make_context()) is None

    def test_amended_context_gets_no_second_round(self) -> None:
        context = _make_context().merge_answers({"payment_request": "no"})
        assert FollowUpQuestionGenerator().generate(_make_verdict(), context) is None

    def test_medium_uncertainty_asks_three_by_weight(self) -> None:
        round_ = FollowUpQuestionGenerator().generate(_make_verdict(confidence=0.6), _make_context())

        assert round_.uncertainty_level == "medium"
        assert [q.id for q in round_.questions] == [
            "payment_request",
            "personal_info_request",
            "email_expectation",
        ]
        assert round_.questions[0].options == [
            {"value": "yes", "label": "Yes"},
            {"value": "no", "label": "No"},
        ]

    def test_high_uncertainty_asks_more(self) -> None:
        round_ = FollowUpQuestionGenerator().generate(
            _make_verdict(VerdictTag.INCONCLUSIVE, 0.1, None), _make_context()
        )
        assert round_.uncertainty_level == "high"
        assert len(round_.questions) == 5

    def test_image_questions_only_for_images(self) -> None:
        generator = FollowUpQuestionGenerator(threshold=1.0)
        text_ids = {q.id for q in generator.generate(
            _make_verdict(confidence=0.2), _make_context()).questions}
        assert "image_authenticity" not in text_ids

    @pytest.mark.parametrize(
        "confidence,level", [(0.1, "high"), (0.39, "high"), (0.5, "medium"), (0.8, "low")]
    )
    def test_uncertainty_levels(self, confidence: float, level: str) -> None:
        assert FollowUpQuestionGenerator.uncertainty_level(confidence) == level


# ── Answer Tests ─────────────────────────────────────────────────────────


class TestApplyAnswers:
    def test_invalid_answer_rejected(self) -> None:
        generator = FollowUpQuestionGenerator()
        with pytest.raises(ValueError, match="Invalid answer"):
            generator.validate_answers({"payment_request": "maybe"})

    def test_unknown_question_ignored(self) -> None:
        FollowUpQuestionGenerator().validate_answers({"not_a_question": "yes"})

    def test_payment_yes_raises_risky_confidence(self) -> None:
        generator = FollowUpQuestionGenerator()
        enhanced = generator.apply_answers(
            _make_verdict(),
            {"payment_request": "yes"},
            [_make_result("a", "b")],
            _make_context(),
        )

        assert enhanced.confidence_adjustment == -0.25
        assert enhanced.verdict.verdict == VerdictTag.SUSPICIOUS
        assert enhanced.verdict.confidence == 0.85
        assert enhanced.verdict.method == "follow_up_enhanced"
        assert "Requests for payment are a hallmark of fraud" in enhanced.insights
        assert enhanced.context.amended
        assert enhanced.context.answers == {"payment_request": "yes"}

    def test_answers_can_lift_inconclusive(self) -> None:
        enhanced = FollowUpQuestionGenerator().apply_answers(
            _make_verdict(VerdictTag.INCONCLUSIVE, 0.1, None),
            {"payment_request": "yes", "personal_info_request": "yes"},
            [],
            _make_context(),
        )
        assert enhanced.verdict.verdict == VerdictTag.SUSPICIOUS
        assert enhanced.verdict.tier == TrustTier.TIER_4
        assert 0.0 <= enhanced.verdict.confidence <= 1.0
        assert "tier 4: indicators upfront_payment, personal_info_request" in (
            enhanced.verdict.evidence_summary
        )

    def test_reassuring_answers_lower_risky_confidence(self) -> None:
        enhanced = FollowUpQuestionGenerator().apply_answers(
            _make_verdict(),
            {"payment_request": "no", "email_expectation": "yes"},
            [_make_result("a", "b")],
            _make_context(),
        )
        assert enhanced.confidence_adjustment == 0.2
        assert enhanced.verdict.confidence == 0.4

    def test_tier1_verdict_is_kept(self) -> None:
        preliminary = _make_verdict(VerdictTag.DEFINITE_SCAM, 0.75, TrustTier.TIER_1)
        enhanced = FollowUpQuestionGenerator().apply_answers(
            preliminary, {"payment_request": "no"}, [], _make_context(0.6)
        )
        assert enhanced.verdict.verdict == VerdictTag.DEFINITE_SCAM
        assert enhanced.verdict.confidence == 0.65

    def test_context_amended_only_once(self) -> None:
        generator = FollowUpQuestionGenerator()
        context = _make_context().merge_answers({})
        with pytest.raises(ValueError, match="already amended"):
            generator.apply_answers(_make_verdict(), {"payment_request": "no"}, [], context)

    def test_answer_source_label(self) -> None:
        assert ANSWER_SOURCE == "user_answers"
