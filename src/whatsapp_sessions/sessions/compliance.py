"""Advisory WhatsApp policy checks.  Never blocks a send."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from whatsapp_sessions.sessions.identity import digits_only
from whatsapp_sessions.sessions.rate_limiter import RateLimiter
from whatsapp_sessions.sessions.validation import COUNTRY_CODE, MAX_MESSAGE_LENGTH

# Promotional / scam vocabulary that tends to get business numbers reported.
SUSPICIOUS_PATTERNS = (
    re.compile(r"spam|promoção|promocao|desconto|oferta|promotion|discount|offer", re.I),
    re.compile(r"bitcoin|cripto|crypto|investimento|investment", re.I),
    re.compile(r"clique aqui|acesse|visite|click here", re.I),
    re.compile(r"gratuito|grátis|gratis|free", re.I),
)

WARNING_FOREIGN_NUMBER = "Number is not Brazilian"
WARNING_SUSPICIOUS_CONTENT = "Message may violate WhatsApp policies"
WARNING_TOO_LONG = "Message too long"
WARNING_RATE_LIMITED = "Message limit exceeded"


@dataclass
class ComplianceResult:
    compliant: bool
    warnings: list[str] = field(default_factory=list)


def compliance_check(
    tenant_id: int,
    phone: str,
    message: str | None = None,
    rate_limiter: RateLimiter | None = None,
) -> ComplianceResult:
    """Collect policy warnings for sending *message* to *phone*.

    The rate-limit status is only inspected; the check itself does not use
    up any of the tenant's budget.
    """
    warnings: list[str] = []

    if not digits_only(phone or "").startswith(COUNTRY_CODE):
        warnings.append(WARNING_FOREIGN_NUMBER)

    if message:
        if any(pattern.search(message) for pattern in SUSPICIOUS_PATTERNS):
            warnings.append(WARNING_SUSPICIOUS_CONTENT)
        if len(message) > MAX_MESSAGE_LENGTH:
            warnings.append(WARNING_TOO_LONG)

    if rate_limiter is not None and rate_limiter.is_limited(tenant_id):
        warnings.append(WARNING_RATE_LIMITED)

    return ComplianceResult(compliant=not warnings, warnings=warnings)
