"""Claim classification and verification planning."""

from truth_engine.planning.context_detector import ContextDetector
from truth_engine.planning.planner import Planner, VerificationPlan

__all__ = ["ContextDetector", "Planner", "VerificationPlan"]
