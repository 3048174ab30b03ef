"""
Domain blacklist checks for referrers, hostnames and email domains
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

TEMP_EMAIL_DOMAINS = frozenset([
    '10minutemail.com', 'guerrillamail.com', 'mailinator.com', 'yopmail.com',
    'tempmail.org', 'maildrop.cc', 'throwaway.email', 'temp-mail.org',
    'fakeinbox.com', 'sharklasers.com', 'grr.la', 'guerrillamailblock.com',
    'pokemail.net', 'spam4.me', 'tempail.com', 'tempmailaddress.com',
    'emailondeck.com', 'mohmal.com', 'mytrashmail.com', 'armyspy.com',
    'cuvox.de', 'dayrep.com', 'fleckens.hu', 'gustr.com', 'jourrapide.com',
    'superrito.com', 'teleworm.us', 'rhyta.com', 'einrot.com',
])

VPN_MAIL_DOMAINS = frozenset([
    'protonmail.com', 'tutanota.com', 'guerrillamail.org', 'secure-mail.biz',
    'anonymousemail.me', 'hidemail.de', 'mytemp.email', 'tmpnator.live',
    'getnada.com', 'temp-mail.io', 'temporary-mail.net',
])

KNOWN_FRAUD_DOMAINS = frozenset([
    'example-fraud.com', 'fake-survey.net', 'scam-emails.org',
])

# (pattern, reason, confidence)
SUSPICIOUS_PATTERNS = [
    (re.compile(r'^[a-z]{1,3}\d+\.[a-z]{2,3}$'), 'Short domain with numbers pattern', 70),
    (re.compile(r'^\d+[a-z]+\.[a-z]{2,3}$'), 'Numbers followed by letters pattern', 65),
    (re.compile(r'^[a-z]+\d{3,}\.[a-z]{2,3}$'), 'Domain with many consecutive numbers', 75),
    (re.compile(r'^.{1,4}\.[a-z]{2}$'), 'Very short domain with 2-letter TLD', 60),
]


@dataclass
class DomainCheckResult:
    domain: str
    is_blacklisted: bool
    confidence: int = 0
    category: Optional[str] = None
    reason: Optional[str] = None
    sources: List[str] = field(default_factory=list)


def extract_domain(value: str) -> str:
    """Normalize an email address, URL or bare host to a lowercase domain"""
    value = (value or '').strip().lower()
    if not value:
        return ''
    if '@' in value and '://' not in value:
        return value.rsplit('@', 1)[1]
    if '://' not in value:
        value = f"//{value}"
    host = urlparse(value).hostname or ''
    return host[4:] if host.startswith('www.') else host


def matches_domain(domain: str, listed: str) -> bool:
    listed = listed.lower().lstrip('.')
    return domain == listed or domain.endswith('.' + listed)


class DomainBlacklist:
    """Checks a domain against configured and built-in lists.

    Configured domains match on suffix so subdomains are covered. When several
    checks hit, the highest-confidence one is reported.
    """

    def __init__(self, configured: Iterable[str] = (), min_confidence: int = 75):
        self.configured = [extract_domain(d) or d.lower() for d in configured if d]
        self.min_confidence = min_confidence

    def check(self, value: str) -> DomainCheckResult:
        domain = extract_domain(value)
        if not domain:
            return DomainCheckResult(domain='', is_blacklisted=False)

        hits = []
        for listed in self.configured:
            if matches_domain(domain, listed):
                hits.append(('configured', 'Domain is blacklisted for this project', 100, 'project-config'))
                break

        if domain in KNOWN_FRAUD_DOMAINS:
            hits.append(('known-fraud', 'Domain flagged for fraudulent activity', 100, 'fraud-database'))
        if domain in TEMP_EMAIL_DOMAINS:
            hits.append(('temporary-email', 'Known temporary email provider', 95, 'temp-email-list'))
        if domain in VPN_MAIL_DOMAINS:
            hits.append(('vpn-service', 'Known VPN/proxy email service', 85, 'vpn-domain-list'))

        for pattern, reason, confidence in SUSPICIOUS_PATTERNS:
            if pattern.match(domain):
                hits.append(('suspicious-pattern', reason, confidence, 'pattern-analysis'))

        if not hits:
            return DomainCheckResult(domain=domain, is_blacklisted=False)

        category, reason, confidence, _ = max(hits, key=lambda h: h[2])
        return DomainCheckResult(
            domain=domain,
            is_blacklisted=confidence >= self.min_confidence,
            confidence=confidence,
            category=category,
            reason=reason,
            sources=[h[3] for h in hits],
        )
