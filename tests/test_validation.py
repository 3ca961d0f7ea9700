"""Tests for input validation."""

import pytest

from whatsapp_sessions.sessions.validation import (
    MAX_MESSAGE_LENGTH,
    MAX_TENANT_ID,
    ValidationFailure,
    validate_message,
    validate_phone_number,
    validate_session_identifier,
    validate_tenant_id,
)


# ── Phone numbers ────────────────────────────────────────

def test_phone_gets_country_code():
    assert validate_phone_number("11987654321") == "5511987654321"


def test_phone_keeps_existing_country_code():
    assert validate_phone_number("+55 11 98765-4321") == "5511987654321"


@pytest.mark.parametrize("phone", ["", None, "123", "12345678901234", "abc"])
def test_phone_rejected(phone):
    with pytest.raises(ValidationFailure) as exc_info:
        validate_phone_number(phone)
    assert exc_info.value.field == "phone"


def test_phone_failure_names_custom_field():
    with pytest.raises(ValidationFailure) as exc_info:
        validate_phone_number("1", field="to")
    assert exc_info.value.field == "to"


# ── Tenant ids ───────────────────────────────────────────

@pytest.mark.parametrize("value,expected", [(1, 1), ("42", 42), (3.0, 3), ("7.0", 7)])
def test_tenant_id_accepted(value, expected):
    assert validate_tenant_id(value) == expected


@pytest.mark.parametrize(
    "value", [None, 0, -1, "0", "abc", "", 1.5, float("nan"), True, [1]]
)
def test_tenant_id_rejected(value):
    with pytest.raises(ValidationFailure) as exc_info:
        validate_tenant_id(value)
    assert exc_info.value.field == "tenant_id"


# ── Messages ─────────────────────────────────────────────

def test_message_trimmed():
    assert validate_message("  hello  ") == "hello"


def test_message_at_limit_accepted():
    text = "a" * MAX_MESSAGE_LENGTH
    assert validate_message(text) == text


@pytest.mark.parametrize("text", ["", "   ", None, "a" * (MAX_MESSAGE_LENGTH + 1)])
def test_message_rejected(text):
    with pytest.raises(ValidationFailure) as exc_info:
        validate_message(text)
    assert exc_info.value.field == "message"


# ── Session identifiers ──────────────────────────────────

def test_session_identifier_parsed():
    parsed = validate_session_identifier("tenant_2_5511987654321")
    assert parsed.tenant_id == 2


@pytest.mark.parametrize("identifier", ["", None, "tenant_2", "../etc/passwd"])
def test_session_identifier_rejected(identifier):
    with pytest.raises(ValidationFailure) as exc_info:
        validate_session_identifier(identifier)
    assert exc_info.value.field == "session_id"


# ── Tenant id range ─────────────────────────────────────

def test_tenant_id_string_keeps_integer_precision():
    assert validate_tenant_id("9007199254740993") == 9007199254740993


@pytest.mark.parametrize("value", [2**63, 2**70, "12345678901234567891", 1e30])
def test_tenant_id_beyond_column_range_rejected(value):
    with pytest.raises(ValidationFailure) as exc_info:
        validate_tenant_id(value)
    assert exc_info.value.field == "tenant_id"


def test_tenant_id_at_column_limit_accepted():
    assert validate_tenant_id(str(MAX_TENANT_ID)) == MAX_TENANT_ID
