"""Tiered verdict resolution."""

from truth_engine.verdict.resolver import (
    RECOMMENDATIONS,
    VerdictResolver,
    VerdictTracker,
    extraction_multiplier,
)

__all__ = ["RECOMMENDATIONS", "VerdictResolver", "VerdictTracker", "extraction_multiplier"]
