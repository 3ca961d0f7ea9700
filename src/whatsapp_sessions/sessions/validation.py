"""Input validation for the session API.

Every rejection raises :class:`ValidationFailure` naming the offending field,
so callers can tell client mistakes apart from internal faults.
"""

from __future__ import annotations

import math

from whatsapp_sessions.sessions.identity import (
    ParsedIdentifier,
    digits_only,
    parse_identifier,
)

COUNTRY_CODE = "55"
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 13
MAX_MESSAGE_LENGTH = 4096  # WhatsApp text message ceiling
MAX_TENANT_ID = 2**63 - 1  # signed 64-bit INTEGER column


class ValidationFailure(ValueError):
    """Raised when caller-supplied input is missing or malformed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message

    def __repr__(self) -> str:
        return f"ValidationFailure(field={self.field!r}, message={self.message!r})"


def validate_phone_number(phone: object, field: str = "phone") -> str:
    """Normalise *phone* to a digit string carrying the country code."""
    if not phone or not isinstance(phone, str):
        raise ValidationFailure(field, "Phone number is required")

    clean = digits_only(phone)
    if len(clean) < MIN_PHONE_DIGITS:
        raise ValidationFailure(
            field, f"Phone number must have at least {MIN_PHONE_DIGITS} digits"
        )
    if len(clean) > MAX_PHONE_DIGITS:
        raise ValidationFailure(
            field, f"Phone number must have at most {MAX_PHONE_DIGITS} digits"
        )

    if not clean.startswith(COUNTRY_CODE):
        return COUNTRY_CODE + clean
    return clean


def validate_tenant_id(tenant_id: object) -> int:
    """Coerce *tenant_id* to a positive integer that fits the tenant column."""
    if tenant_id is None:
        raise ValidationFailure("tenant_id", "Tenant id is required")
    if isinstance(tenant_id, bool):
        raise ValidationFailure("tenant_id", "Tenant id must be a positive integer")

    value = tenant_id
    if isinstance(value, str):
        text = value.strip()
        try:
            value = int(text)
        except ValueError:
            # "7.0"-style input
            try:
                value = float(text)
            except ValueError:
                raise ValidationFailure(
                    "tenant_id", "Tenant id must be a positive integer"
                ) from None

    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            raise ValidationFailure("tenant_id", "Tenant id must be a positive integer")
        value = int(value)

    if not isinstance(value, int) or value <= 0:
        raise ValidationFailure("tenant_id", "Tenant id must be a positive integer")
    if value > MAX_TENANT_ID:
        raise ValidationFailure("tenant_id", "Tenant id is out of range")
    return value


def validate_session_identifier(identifier: object) -> ParsedIdentifier:
    if not identifier or not isinstance(identifier, str):
        raise ValidationFailure("session_id", "Session id is required")
    parsed = parse_identifier(identifier)
    if parsed is None:
        raise ValidationFailure("session_id", "Invalid session id")
    return parsed


def validate_message(message: object) -> str:
    """Return the trimmed message text, rejecting empty or oversized input."""
    if not message or not isinstance(message, str):
        raise ValidationFailure("message", "Message is required")

    trimmed = message.strip()
    if not trimmed:
        raise ValidationFailure("message", "Message cannot be empty")
    if len(trimmed) > MAX_MESSAGE_LENGTH:
        raise ValidationFailure(
            "message", f"Message too long (maximum {MAX_MESSAGE_LENGTH} characters)"
        )
    return trimmed
