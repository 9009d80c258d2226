"""Follow-up questions for low-confidence verdicts."""

from truth_engine.followup.questions import (
    QUESTION_BANK,
    EnhancedVerdict,
    FollowUpQuestion,
    FollowUpQuestionGenerator,
    FollowUpRound,
)

__all__ = [
    "QUESTION_BANK",
    "EnhancedVerdict",
    "FollowUpQuestion",
    "FollowUpQuestionGenerator",
    "FollowUpRound",
]
