"""Clarifying questions for low-confidence verdicts.

When the resolved confidence is below the clarification threshold the
session asks the user a short list of questions. Answers carry two
things: a signed confidence adjustment (negative means "looks more like
a scam") and, for red-flag answers, a behavioral risk indicator that is
fed back into tier-4 resolution.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from truth_engine.config.settings import settings
from truth_engine.schemas.claim import ClaimContext, ClaimType, Recency
from truth_engine.schemas.source import SourceKind, TrustTier
from truth_engine.schemas.task import TaskResult
from truth_engine.schemas.verdict import VerdictFragment, VerdictRecord, VerdictTag
from truth_engine.verdict.resolver import RECOMMENDATIONS, VerdictResolver, risk_level

WEIGHT_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
MAX_QUESTIONS = {"high": 5, "medium": 3, "low": 2}
ANSWER_SOURCE = "user_answers"


@dataclass(frozen=True)
class AnswerOption:
    value: str
    label: str
    adjustment: float
    indicator: Optional[str] = None
    insight: Optional[str] = None


@dataclass(frozen=True)
class QuestionTemplate:
    id: str
    text: str
    weight: str
    applies: Callable[[ClaimContext, VerdictRecord], bool]
    options: tuple[AnswerOption, ...]

    def option(self, value: str) -> AnswerOption:
        for opt in self.options:
            if opt.value == value:
                return opt
        raise ValueError(f"Invalid answer {value!r} for question {self.id}")


def _yes_no(
    yes: float,
    no: float,
    yes_flag: Optional[str] = None,
    no_flag: Optional[str] = None,
    yes_insight: Optional[str] = None,
    no_insight: Optional[str] = None,
) -> tuple[AnswerOption, ...]:
    return (
        AnswerOption("yes", "Yes", yes, yes_flag, yes_insight),
        AnswerOption("no", "No", no, no_flag, no_insight),
    )


def _has(claim_type: ClaimType) -> Callable[[ClaimContext, VerdictRecord], bool]:
    return lambda ctx, _verdict: ctx.has_type(claim_type)


QUESTION_BANK: tuple[QuestionTemplate, ...] = (
    QuestionTemplate(
        "payment_request",
        "Does the message ask you to pay, transfer money or buy gift cards?",
        "critical",
        lambda ctx, _v: ctx.has_type(ClaimType.FINANCIAL) or bool(ctx.entities_of("money")),
        _yes_no(-0.25, 0.1, yes_flag="upfront_payment",
                yes_insight="Requests for payment are a hallmark of fraud"),
    ),
    QuestionTemplate(
        "personal_info_request",
        "Does it ask for passwords, ID numbers or bank details?",
        "critical",
        lambda _ctx, _v: True,
        _yes_no(-0.3, 0.1, yes_flag="personal_info_request",
                yes_insight="Legitimate organisations do not ask for credentials this way"),
    ),
    QuestionTemplate(
        "email_expectation",
        "Were you expecting this message?",
        "high",
        lambda ctx, _v: ctx.has_type(ClaimType.COMMUNICATION) or bool(ctx.entities_of("email")),
        _yes_no(0.1, -0.15, no_flag="unexpected_contact",
                no_insight="Unsolicited contact raises the risk"),
    ),
    QuestionTemplate(
        "financial_account",
        "Do you hold an account with the organisation mentioned?",
        "high",
        lambda ctx, _v: bool(ctx.entities_of("organization")) and ctx.has_type(ClaimType.FINANCIAL),
        _yes_no(0.05, -0.2, no_flag="no_account_relationship",
                no_insight="The sender claims a relationship you do not have"),
    ),
    QuestionTemplate(
        "authority_verification",
        "Have you confirmed this with the organisation through its official contact details?",
        "high",
        _has(ClaimType.AUTHORITY),
        _yes_no(0.15, -0.05, no_flag="unverified_authority"),
    ),
    QuestionTemplate(
        "too_good_to_be_true",
        "Does the offer seem too good to be true?",
        "high",
        lambda ctx, _v: ctx.has_type(ClaimType.SCAM_PATTERN) or ctx.has_type(ClaimType.FINANCIAL),
        _yes_no(-0.2, 0.05, yes_flag="too_good_to_be_true",
                yes_insight="Offers that seem too good to be true usually are"),
    ),
    QuestionTemplate(
        "sender_recognition",
        "Do you recognise the sender's address?",
        "medium",
        lambda ctx, _v: bool(ctx.entities_of("email")),
        _yes_no(0.1, -0.1, no_flag="unknown_sender"),
    ),
    QuestionTemplate(
        "url_familiar",
        "Do you recognise the website in the link?",
        "medium",
        lambda ctx, _v: bool(ctx.entities_of("url") or ctx.entities_of("domain")),
        _yes_no(0.05, -0.1, no_flag="unfamiliar_link"),
    ),
    QuestionTemplate(
        "urgency_pressure",
        "How soon does the message want you to act?",
        "medium",
        lambda ctx, _v: ctx.temporal.recency != Recency.LOW,
        (
            AnswerOption("immediate", "Immediately", -0.15, "urgency_pressure",
                         "Pressure to act immediately is a manipulation tactic"),
            AnswerOption("soon", "Within a few days", -0.05),
            AnswerOption("no_rush", "No deadline", 0.1),
        ),
    ),
    QuestionTemplate(
        "image_authenticity",
        "Did you take this screenshot yourself?",
        "medium",
        lambda ctx, _v: ctx.source_type == "image",
        _yes_no(0.05, -0.1, no_flag="forwarded_image"),
    ),
    QuestionTemplate(
        "image_quality",
        "Is the whole message visible and legible in the image?",
        "low",
        lambda ctx, _v: ctx.source_type == "image",
        _yes_no(0.05, -0.05),
    ),
)


class FollowUpQuestion(BaseModel):
    id: str
    question: str
    weight: str
    options: list[dict[str, str]]


class FollowUpRound(BaseModel):
    """Questions asked for one preliminary verdict."""

    questions: list[FollowUpQuestion]
    uncertainty_level: str = Field(..., description="high, medium or low")
    explanation: str


class EnhancedVerdict(BaseModel):
    """Verdict after follow-up answers were merged."""

    verdict: VerdictRecord
    confidence_adjustment: float
    insights: list[str] = Field(default_factory=list)
    context: ClaimContext


class FollowUpQuestionGenerator:
    """Selects questions for a verdict and folds answers back into it."""

    def __init__(
        self,
        resolver: Optional[VerdictResolver] = None,
        threshold: Optional[float] = None,
        bank: tuple[QuestionTemplate, ...] = QUESTION_BANK,
    ):
        self.resolver = resolver or VerdictResolver()
        self.threshold = settings.clarification_threshold if threshold is None else threshold
        self.bank = {q.id: q for q in bank}
        self._logger = structlog.get_logger().bind(component="FollowUpQuestionGenerator")

    @staticmethod
    def uncertainty_level(confidence: float) -> str:
        if confidence < 0.4:
            return "high"
        if confidence < 0.7:
            return "medium"
        return "low"

    def generate(
        self, verdict: VerdictRecord, context: ClaimContext
    ) -> Optional[FollowUpRound]:
        """Questions for a preliminary verdict, or None when it is confident enough."""
        if verdict.confidence >= self.threshold:
            return None
        if verdict.verdict == VerdictTag.MANUAL_REVIEW_REQUIRED or context.amended:
            return None

        level = self.uncertainty_level(verdict.confidence)
        candidates = [q for q in self.bank.values() if q.applies(context, verdict)]
        candidates.sort(key=lambda q: WEIGHT_ORDER[q.weight])
        selected = candidates[: MAX_QUESTIONS[level]]
        if not selected:
            return None

        self._logger.info(
            "follow_up_generated",
            questions=[q.id for q in selected],
            uncertainty=level,
            confidence=verdict.confidence,
        )
        return FollowUpRound(
            questions=[
                FollowUpQuestion(
                    id=q.id,
                    question=q.text,
                    weight=q.weight,
                    options=[{"value": o.value, "label": o.label} for o in q.options],
                )
                for q in selected
            ],
            uncertainty_level=level,
            explanation=(
                f"Confidence {verdict.confidence:.0%} is below {self.threshold:.0%}; "
                "a few answers can sharpen the result"
            ),
        )

    def validate_answers(self, answers: dict[str, Any]) -> None:
        """Raise ValueError if any known question got an answer it does not offer."""
        for question_id, raw in answers.items():
            template = self.bank.get(question_id)
            if template is not None:
                template.option(str(raw))

    def apply_answers(
        self,
        preliminary: VerdictRecord,
        answers: dict[str, Any],
        results: list[TaskResult],
        context: ClaimContext,
    ) -> EnhancedVerdict:
        """Merge answers into the context and re-resolve.

        Raises:
            ValueError: On an answer value a question does not offer, or
                when the context was already amended.
        """
        adjustment = 0.0
        indicators: list[str] = []
        insights: list[str] = []
        accepted: dict[str, str] = {}
        for question_id, raw in answers.items():
            template = self.bank.get(question_id)
            if template is None:
                continue
            option = template.option(str(raw))
            accepted[question_id] = option.value
            adjustment += option.adjustment
            if option.indicator:
                indicators.append(option.indicator)
            if option.insight:
                insights.append(option.insight)

        amended = context.merge_answers(accepted)

        evidence = list(results)
        if indicators:
            answer_result = TaskResult(
                task_id=ANSWER_SOURCE,
                source_name=ANSWER_SOURCE,
                kind=SourceKind.TRADITIONAL,
                tier=TrustTier.TIER_4,
            )
            answer_result.mark_completed(
                TrustTier.TIER_4.weight,
                VerdictFragment(risk_indicators=tuple(dict.fromkeys(indicators))),
                {"answers": accepted},
            )
            evidence.append(answer_result)

        if preliminary.tier == TrustTier.TIER_1:
            base = preliminary
        else:
            base = self.resolver.resolve(evidence, context.extraction_confidence)

        if base.verdict.is_risky:
            confidence = base.confidence - adjustment
        elif base.verdict == VerdictTag.LEGITIMATE:
            confidence = base.confidence + adjustment
        else:
            confidence = base.confidence
        confidence = round(max(0.0, min(1.0, confidence)), 4)

        enhanced = base.model_copy(update={
            "confidence": confidence,
            "risk_level": risk_level(base.verdict, confidence),
            "recommendations": list(RECOMMENDATIONS[base.verdict]),
            "evidence_summary": base.evidence_summary + insights,
            "method": "follow_up_enhanced",
        })
        self._logger.info(
            "follow_up_applied",
            answered=len(accepted),
            adjustment=round(adjustment, 4),
            verdict=enhanced.verdict.value,
            confidence=confidence,
        )
        return EnhancedVerdict(
            verdict=enhanced,
            confidence_adjustment=round(adjustment, 4),
            insights=insights,
            context=amended,
        )
