"""Built-in capability providers.

Offline inspectors that declare capability tags. Several providers may
declare the same capability; the router fans out to all of them.
"""

import ipaddress
import re
from typing import Any
from urllib.parse import urlparse

from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import (
    CapabilityKind,
    SourceKind,
    TrustTier,
    VerificationSource,
)
from truth_engine.schemas.verdict import VerdictFragment
from truth_engine.sources.base import ProviderOutcome, VerificationProvider
from truth_engine.sources.heuristics import FREE_MAIL_DOMAINS

URL_SHORTENERS = frozenset({"bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd", "buff.ly"})
SUSPICIOUS_TLDS = frozenset({"xyz", "top", "click", "zip", "loan", "work", "gq", "tk", "ml"})
DISPOSABLE_DOMAINS = frozenset({"mailinator.com", "guerrillamail.com", "10minutemail.com", "tempmail.com"})

# Brand name -> domains the brand actually uses
OFFICIAL_DOMAINS: dict[str, frozenset[str]] = {
    "paypal": frozenset({"paypal.com"}),
    "amazon": frozenset({"amazon.com", "amazon.co.uk", "amazon.de"}),
    "microsoft": frozenset({"microsoft.com", "live.com", "outlook.com"}),
    "apple": frozenset({"apple.com", "icloud.com"}),
    "facebook": frozenset({"facebook.com", "fb.com", "meta.com"}),
    "irs": frozenset({"irs.gov"}),
    "netflix": frozenset({"netflix.com"}),
}

CONTACT_PATTERNS: dict[str, re.Pattern[str]] = {
    "off_platform_contact": re.compile(r"whatsapp|telegram|signal app|text me at|dm me"),
    "phone_callback": re.compile(r"call (?:us |me )?(?:now |today )?(?:at|on)?\s*\+?\d[\d\-\s().]{6,}"),
    "personal_info_request": re.compile(
        r"social security number|\bssn\b|bank (?:account|details)|password|pin code|date of birth"
    ),
    "payment_channel": re.compile(r"gift ?cards?|wire transfer|western union|moneygram|crypto(?:currency)? wallet"),
}


def _registered_domain(host: str) -> str:
    parts = host.lower().strip(".").split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else host.lower()


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _hosts(context: ClaimContext) -> list[str]:
    hosts = []
    for url in context.entities_of("url"):
        parsed = urlparse(url if "://" in url else f"http://{url}")
        if parsed.hostname:
            hosts.append(parsed.hostname.lower())
    hosts.extend(d.lower() for d in context.entities_of("domain"))
    return list(dict.fromkeys(hosts))


class UrlStructureInspector(VerificationProvider):
    """Flags link shorteners, raw IP hosts, throwaway TLDs and plain-http links."""

    descriptor = VerificationSource(
        name="url_structure_inspector",
        tier=TrustTier.TIER_4,
        reliability=0.7,
        expected_duration=1.0,
        kind=SourceKind.CAPABILITY_PROVIDER,
        capabilities=frozenset({CapabilityKind.WEB_AUTOMATION}),
        description="Structural URL inspection",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        indicators: list[str] = []
        for host in _hosts(context):
            if _registered_domain(host) in URL_SHORTENERS or host in URL_SHORTENERS:
                indicators.append("shortened_url")
            if _is_ip_address(host):
                indicators.append("ip_address_host")
            if host.rsplit(".", 1)[-1] in SUSPICIOUS_TLDS:
                indicators.append("suspicious_tld")
            if host.count("-") >= 2 or host.count(".") >= 4:
                indicators.append("deceptive_subdomain")
        if any(u.lower().startswith("http://") for u in context.entities_of("url")):
            indicators.append("insecure_link")

        indicators = list(dict.fromkeys(indicators))
        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(indicators) / 2),
            fragment=VerdictFragment(risk_indicators=tuple(indicators)),
            evidence={"hosts": _hosts(context), "indicators": indicators},
        )


class DomainReputationInspector(VerificationProvider):
    """Flags lookalike brand domains, free-mail senders and disposable inboxes."""

    descriptor = VerificationSource(
        name="domain_reputation_inspector",
        tier=TrustTier.TIER_4,
        reliability=0.75,
        expected_duration=1.2,
        kind=SourceKind.CAPABILITY_PROVIDER,
        capabilities=frozenset({CapabilityKind.WEB_AUTOMATION}),
        description="Offline domain reputation lists",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        indicators: list[str] = []
        lookalikes: list[str] = []
        for host in _hosts(context):
            registered = _registered_domain(host)
            for brand, official in OFFICIAL_DOMAINS.items():
                if brand in host and registered not in official:
                    lookalikes.append(host)
        if lookalikes:
            indicators.append("lookalike_domain")

        sender_domains = {e.rsplit("@", 1)[-1].lower() for e in context.entities_of("email")}
        if sender_domains & FREE_MAIL_DOMAINS and context.entities_of("organization"):
            indicators.append("free_mail_sender")
        if sender_domains & DISPOSABLE_DOMAINS:
            indicators.append("disposable_mailbox")

        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(indicators) / 2),
            fragment=VerdictFragment(risk_indicators=tuple(indicators)),
            evidence={"lookalikes": lookalikes, "sender_domains": sorted(sender_domains)},
        )


class ContactChannelInspector(VerificationProvider):
    """Looks at how the message asks to be answered or paid."""

    descriptor = VerificationSource(
        name="contact_channel_inspector",
        tier=TrustTier.TIER_4,
        reliability=0.65,
        expected_duration=0.7,
        kind=SourceKind.CAPABILITY_PROVIDER,
        capabilities=frozenset({CapabilityKind.KNOWLEDGE_MANAGEMENT}),
        description="Known scam contact and payment channels",
    )

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        text = context.text.lower()
        indicators = tuple(name for name, rx in CONTACT_PATTERNS.items() if rx.search(text))
        return ProviderOutcome(
            confidence=self.descriptor.reliability * min(1.0, len(indicators) / 2),
            fragment=VerdictFragment(risk_indicators=indicators),
            evidence={"indicators": list(indicators)},
        )


def default_capability_providers() -> list[VerificationProvider]:
    return [
        UrlStructureInspector(),
        DomainReputationInspector(),
        ContactChannelInspector(),
    ]
