"""Claim classification: claim types, entities and temporal pressure."""

import re
from typing import Literal

import structlog

from truth_engine.schemas.claim import (
    ClaimContext,
    ClaimType,
    Entity,
    ExtractionResult,
    Recency,
    TemporalHint,
)

CLAIM_TYPE_PATTERNS: dict[ClaimType, re.Pattern[str]] = {
    ClaimType.FINANCIAL: re.compile(
        r"\$[\d,]+|money|payment|refund|bank|account|invest|bitcoin|crypto|fund|prize|lottery|inheritance"
    ),
    ClaimType.TEMPORAL: re.compile(
        r"urgent|immediate|today|expires?|deadline|within \d+ (?:hours|days)|now\b"
    ),
    ClaimType.WEB: re.compile(r"https?://|www\.|\.com\b|\.net\b|\.org\b|click|link|website"),
    ClaimType.COMMUNICATION: re.compile(r"email|e-mail|message|@|call|text|contact|reply"),
    ClaimType.AUTHORITY: re.compile(
        r"\birs\b|\bfbi\b|government|police|tax|social security|microsoft|ceo|official"
    ),
    ClaimType.PRODUCT: re.compile(r"product|buy|sale|discount|offer|order|shipping|deal"),
    ClaimType.NEWS: re.compile(r"breaking|report(?:ed|s)?|according to|announced|news"),
    ClaimType.HEALTH: re.compile(r"cure|vaccine|doctor|disease|weight loss|miracle|supplement"),
    ClaimType.CELEBRITY: re.compile(r"zuckerberg|musk|bezos|oprah|celebrity|famous"),
    ClaimType.SCAM_PATTERN: re.compile(
        r"congratulations|you(?:'ve| have)? won|winner|claim your|act now|verify your account|gift ?card"
    ),
}

URGENCY_MARKERS: tuple[str, ...] = (
    "urgent",
    "immediately",
    "expires today",
    "act now",
    "final notice",
    "within 24 hours",
    "last chance",
)

EMAIL_RE = re.compile(r"\b[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}\b", re.IGNORECASE)
URL_RE = re.compile(r"\b(?:https?://|www\.)[^\s<>\"')]+", re.IGNORECASE)
DOMAIN_RE = re.compile(r"\b(?:[a-z0-9-]+\.)+(?:com|net|org|gov|io|co|xyz|top|info|biz|ly)\b", re.IGNORECASE)
MONEY_RE = re.compile(r"\$\s?[\d,]+(?:\.\d+)?(?:\s?(?:million|billion|k))?", re.IGNORECASE)

KNOWN_ORGANIZATIONS: tuple[str, ...] = (
    "IRS",
    "FBI",
    "FTC",
    "Social Security Administration",
    "Microsoft",
    "Apple",
    "Amazon",
    "PayPal",
    "Facebook",
    "Google",
    "Netflix",
    "Bank of America",
    "Wells Fargo",
)


class ContextDetector:
    """Builds the immutable ClaimContext for a session."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger().bind(component="ContextDetector")

    def detect(
        self,
        extraction: ExtractionResult,
        source_type: Literal["text", "image"] = "text",
    ) -> ClaimContext:
        text = extraction.text.strip()
        lowered = text.lower()

        claim_types = tuple(t for t, rx in CLAIM_TYPE_PATTERNS.items() if rx.search(lowered))
        if not claim_types:
            claim_types = (ClaimType.GENERAL,)

        entities = self._extract_entities(text)
        temporal = self._temporal_hint(lowered)
        strategy = self._strategy(claim_types, entities)

        self._logger.debug(
            "context_detected",
            claim_types=[t.value for t in claim_types],
            entities=len(entities),
            recency=temporal.recency.value,
            strategy=strategy,
        )

        return ClaimContext(
            text=text,
            extraction=extraction,
            claim_types=claim_types,
            entities=entities,
            temporal=temporal,
            strategy=strategy,
            source_type=source_type,
        )

    def _extract_entities(self, text: str) -> tuple[Entity, ...]:
        found: list[Entity] = []
        emails = EMAIL_RE.findall(text)
        found.extend(Entity(type="email", value=e) for e in emails)
        urls = [u.rstrip(".,;:!?") for u in URL_RE.findall(text)]
        found.extend(Entity(type="url", value=u) for u in urls)

        # Bare domains not already covered by an email or URL
        covered = " ".join(emails + urls).lower()
        for domain in DOMAIN_RE.findall(text):
            if domain.lower() not in covered:
                found.append(Entity(type="domain", value=domain))

        lowered = text.lower()
        for org in KNOWN_ORGANIZATIONS:
            if re.search(rf"\b{re.escape(org.lower())}\b", lowered):
                found.append(Entity(type="organization", value=org))
        found.extend(Entity(type="money", value=m.strip()) for m in MONEY_RE.findall(text))
        return tuple(dict.fromkeys(found))

    @staticmethod
    def _temporal_hint(lowered: str) -> TemporalHint:
        markers = tuple(m for m in URGENCY_MARKERS if m in lowered)
        if markers:
            recency = Recency.HIGH
        elif CLAIM_TYPE_PATTERNS[ClaimType.TEMPORAL].search(lowered):
            recency = Recency.MEDIUM
        else:
            recency = Recency.LOW
        return TemporalHint(recency=recency, markers=markers)

    @staticmethod
    def _strategy(claim_types: tuple[ClaimType, ...], entities: tuple[Entity, ...]) -> str:
        scam_like = {ClaimType.SCAM_PATTERN, ClaimType.FINANCIAL, ClaimType.AUTHORITY}
        if scam_like & set(claim_types):
            return "scam_screening"
        if any(e.type in ("url", "domain") for e in entities):
            return "web_inspection"
        return "general_review"
