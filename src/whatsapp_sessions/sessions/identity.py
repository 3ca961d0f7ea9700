"""Session identifiers — one canonical string per (tenant, phone) pair.

Two forms exist:

* permanent: ``tenant_<tenant_id>_<phone_digits>``
* temporary: ``tenant_<tenant_id>_temp_<epoch_millis>``, used until the QR
  code is scanned and the connected phone number becomes known.

Temporary identifiers are seeded with the current millisecond, so two
sessions created for the same tenant within the same millisecond collide.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

TEMP_MARKER = "temp"

_NON_DIGITS = re.compile(r"\D")
_PERMANENT_RE = re.compile(r"^tenant_(\d+)_(\d+)$")
_TEMPORARY_RE = re.compile(r"^tenant_(\d+)_temp_\d+$")


@dataclass(frozen=True)
class ParsedIdentifier:
    """Components recovered from a session identifier."""

    tenant_id: int
    phone: str

    @property
    def is_temporary(self) -> bool:
        return self.phone == TEMP_MARKER


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value)


def derive_identifier(tenant_id: int, phone: str | None = None) -> str:
    """Build the identifier for *tenant_id*, temporary when *phone* is omitted."""
    if phone:
        return f"tenant_{tenant_id}_{digits_only(phone)}"
    return f"tenant_{tenant_id}_{TEMP_MARKER}_{int(time.time() * 1000)}"


def parse_identifier(identifier: str) -> ParsedIdentifier | None:
    """Split *identifier* into tenant and phone.

    Returns ``None`` for anything that is not a session identifier; callers
    treat that as "not found".
    """
    if not isinstance(identifier, str):
        return None
    match = _PERMANENT_RE.match(identifier)
    if match:
        return ParsedIdentifier(tenant_id=int(match.group(1)), phone=match.group(2))
    match = _TEMPORARY_RE.match(identifier)
    if match:
        return ParsedIdentifier(tenant_id=int(match.group(1)), phone=TEMP_MARKER)
    return None


def is_temporary(identifier: str) -> bool:
    parsed = parse_identifier(identifier)
    return parsed is not None and parsed.is_temporary


def phone_from_jid(jid: str | None) -> str | None:
    """Extract the phone digits from a transport identity.

    ``5511999999999:12@s.whatsapp.net`` → ``5511999999999``
    """
    if not jid:
        return None
    user = jid.split("@", 1)[0].split(":", 1)[0]
    phone = digits_only(user)
    return phone or None


def to_jid(phone: str) -> str:
    """Address a phone number on the WhatsApp network."""
    return f"{digits_only(phone)}@s.whatsapp.net"
