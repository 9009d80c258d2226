"""Built-in traditional sources, one per trust tier.

These are offline, deterministic heuristics so the engine runs end to
end without network access. Real authority lookups or complaint
database clients register alongside or instead of them through the
same ``VerificationProvider`` interface.
"""

import re
from dataclasses import dataclass
from typing import Any

from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import SourceKind, TrustTier, VerificationSource
from truth_engine.schemas.verdict import VerdictFragment, VerdictTag
from truth_engine.sources.base import ProviderOutcome, VerificationProvider

# Organisations and public figures commonly impersonated
AUTHORITY_NAMES: tuple[str, ...] = (
    "irs",
    "internal revenue service",
    "social security administration",
    "ssa",
    "fbi",
    "federal trade commission",
    "microsoft",
    "apple support",
    "paypal",
    "amazon",
    "bank of america",
    "wells fargo",
    "mark zuckerberg",
    "elon musk",
    "facebook ceo",
)

FREE_MAIL_DOMAINS: frozenset[str] = frozenset({
    "gmail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "aol.com",
    "protonmail.com",
    "icloud.com",
    "mail.ru",
    "gmx.com",
})

PATTERN_CATEGORIES: dict[str, re.Pattern[str]] = {
    "lottery": re.compile(
        r"lottery|you(?:'ve| have)? won|\bprize\b|congratulations.*amount|winning amount"
    ),
    "authority_impersonation": re.compile(
        r"ceo.*facebook|\birs\b.*refund|microsoft.*security|social security administration|federal agent"
    ),
    "urgency": re.compile(
        r"urgent|immediate(?:ly)?|expires?.*today|act now|within 24 hours|final notice"
    ),
    "financial_lure": re.compile(
        r"\$[\d,]+|million|inheritance.*fund|wire transfer|bitcoin|gift ?cards?"
    ),
    "phishing": re.compile(
        r"verify your account|confirm your (?:identity|password|details)|login details|account (?:has been )?suspended|click (?:here|the link)"
    ),
    "shortened_link": re.compile(r"bit\.ly/|tinyurl\.com/|\bt\.co/|goo\.gl/|ow\.ly/|is\.gd/"),
}

RISK_INDICATORS: dict[str, re.Pattern[str]] = {
    "mathematically_impossible": re.compile(
        r"guaranteed.*\d+\s*%|500%.*return|risk.?free.*profit|double your money"
    ),
    "emotional_manipulation": re.compile(
        r"limited.*time|expires.*today|last.*chance|don'?t.*miss|once in a lifetime"
    ),
    "business_model_flaw": re.compile(
        r"no.*investment|free.*money|passive.*income.*guaranteed|work from home.*\$"
    ),
    "secrecy_request": re.compile(
        r"keep (?:this|it) (?:secret|confidential)|don'?t tell anyone|between us"
    ),
}


@dataclass(frozen=True)
class ComplaintSignature:
    """A scam shape recorded by one or more complaint databases.

    Every pattern must match for the signature to fire.
    """

    name: str
    patterns: tuple[str, ...]
    databases: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return all(re.search(p, text) for p in self.patterns)


COMPLAINT_SIGNATURES: tuple[ComplaintSignature, ...] = (
    ComplaintSignature(
        "social_media_lottery",
        (r"winning amount|lottery|sweepstakes", r"facebook|instagram|whatsapp"),
        ("BBB Scam Tracker", "FTC Consumer Sentinel"),
    ),
    ComplaintSignature(
        "gift_card_payment",
        (r"gift ?cards?", r"\bpay|payment|purchase"),
        ("FTC Consumer Sentinel", "IC3"),
    ),
    ComplaintSignature(
        "advance_fee",
        (r"processing fee|release fee|clearance fee|transfer fee", r"fund|prize|inheritance|package"),
        ("BBB Scam Tracker", "IC3"),
    ),
    ComplaintSignature(
        "tech_support",
        (r"virus|infected|hacked", r"call|contact", r"support|technician"),
        ("FTC Consumer Sentinel",),
    ),
)


def _mentions(text: str, name: str) -> bool:
    return re.search(rf"\b{re.escape(name)}\b", text) is not None


def _email_domains(context: ClaimContext) -> set[str]:
    return {e.rsplit("@", 1)[-1].lower() for e in context.entities_of("email")}


class AuthorityImpersonationCheck(VerificationProvider):
    """Tier 1: an authority or public figure writing from a free-mail address."""

    descriptor = VerificationSource(
        name="authority_impersonation_check",
        tier=TrustTier.TIER_1,
        reliability=1.0,
        expected_duration=0.6,
        kind=SourceKind.TRADITIONAL,
        description="Authority or public figure paired with a free-mail sender domain",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        text = context.text.lower()
        authorities = [name for name in AUTHORITY_NAMES if _mentions(text, name)]
        free_mail = sorted(
            d for d in FREE_MAIL_DOMAINS
            if d in _email_domains(context) or _mentions(text, d)
        )

        if authorities and free_mail:
            return ProviderOutcome(
                confidence=self.descriptor.reliability,
                fragment=VerdictFragment(
                    verdict=VerdictTag.DEFINITE_SCAM,
                    definitive=True,
                    notes=(f"{authorities[0]} does not correspond from {free_mail[0]}",),
                ),
                evidence={"authorities": authorities, "free_mail_domains": free_mail},
            )

        return ProviderOutcome(
            confidence=0.2 if authorities else 0.1,
            fragment=VerdictFragment(),
            evidence={"authorities": authorities, "free_mail_domains": free_mail},
        )


class ComplaintDatabaseCheck(VerificationProvider):
    """Tier 2: match against scam shapes recorded in complaint databases."""

    descriptor = VerificationSource(
        name="complaint_database_check",
        tier=TrustTier.TIER_2,
        reliability=0.95,
        expected_duration=0.8,
        kind=SourceKind.TRADITIONAL,
        description="Known complaint-database scam signatures",
    )

    def __init__(self, signatures: tuple[ComplaintSignature, ...] = COMPLAINT_SIGNATURES, **kwargs):
        super().__init__(**kwargs)
        self.signatures = signatures

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        text = context.text.lower()
        hits = [s for s in self.signatures if s.matches(text)]
        if not hits:
            return ProviderOutcome(confidence=0.1, evidence={"signatures": []})

        databases = tuple(dict.fromkeys(db for s in hits for db in s.databases))
        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(databases) / 2),
            fragment=VerdictFragment(
                verdict=VerdictTag.SCAM,
                corroborating_sources=databases,
                notes=tuple(f"matches {s.name} complaints" for s in hits),
            ),
            evidence={"signatures": [s.name for s in hits], "databases": list(databases)},
        )


class ScamPatternRecognition(VerificationProvider):
    """Tier 3: count independent scam pattern categories."""

    descriptor = VerificationSource(
        name="scam_pattern_recognition",
        tier=TrustTier.TIER_3,
        reliability=0.85,
        expected_duration=0.5,
        kind=SourceKind.TRADITIONAL,
        description="Regex scam pattern categories",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        text = context.text.lower()
        categories = tuple(name for name, rx in PATTERN_CATEGORIES.items() if rx.search(text))
        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(categories) / 3),
            fragment=VerdictFragment(
                verdict=VerdictTag.LIKELY_SCAM if categories else None,
                pattern_categories=categories,
            ),
            evidence={"categories": list(categories)},
        )


class BehavioralHeuristics(VerificationProvider):
    """Tier 4: behavioral red flags such as impossible returns or secrecy."""

    descriptor = VerificationSource(
        name="behavioral_heuristics",
        tier=TrustTier.TIER_4,
        reliability=0.6,
        expected_duration=0.4,
        kind=SourceKind.TRADITIONAL,
        description="Behavioral risk indicators",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        text = context.text.lower()
        indicators = tuple(name for name, rx in RISK_INDICATORS.items() if rx.search(text))
        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(indicators) / 2),
            fragment=VerdictFragment(
                verdict=VerdictTag.SUSPICIOUS if indicators else None,
                risk_indicators=indicators,
            ),
            evidence={"indicators": list(indicators)},
        )


def default_traditional_sources() -> list[VerificationProvider]:
    return [
        AuthorityImpersonationCheck(),
        ComplaintDatabaseCheck(),
        ScamPatternRecognition(),
        BehavioralHeuristics(),
    ]
