"""Capability routing and provider fan-out."""

from truth_engine.routing.capability_router import (
    CAPABILITY_KEYWORDS,
    CLAIM_TYPE_CAPABILITIES,
    CapabilityRouter,
)

__all__ = ["CAPABILITY_KEYWORDS", "CLAIM_TYPE_CAPABILITIES", "CapabilityRouter"]
