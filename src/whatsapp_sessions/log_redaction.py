"""Logging filter that masks phone numbers before records are emitted."""

from __future__ import annotations

import logging
import re

# 10–13 digit runs, except the millisecond stamp of temporary identifiers.
_PHONE_RE = re.compile(r"(?<!\d)(?<!temp_)(\d{4})(\d{4,7})(\d{2})(?!\d)")

_formatter = logging.Formatter()


def redact_phones(text: str) -> str:
    """``tenant_1_5511999999999`` → ``tenant_1_5511*******99``"""
    return _PHONE_RE.sub(lambda m: m.group(1) + "*" * len(m.group(2)) + m.group(3), text)


class PhoneRedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_phones(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        # Formatters reuse a cached exc_text, so render the traceback here.
        if record.exc_info and not record.exc_text:
            record.exc_text = _formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact_phones(record.exc_text)
        if record.stack_info:
            record.stack_info = redact_phones(record.stack_info)
        return True


def install(logger: logging.Logger | None = None) -> None:
    """Attach the filter to every handler of *logger* (root by default)."""
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, PhoneRedactionFilter) for f in handler.filters):
            handler.addFilter(PhoneRedactionFilter())
