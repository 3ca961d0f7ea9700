"""Public error types and the translation of internal failures into them."""

from __future__ import annotations

import logging

from whatsapp_sessions.sessions.validation import ValidationFailure
from whatsapp_sessions.transport.base import DisconnectReason, TransportError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error. Contact support."


class SessionError(Exception):
    """Safe, caller-facing error raised by the lifecycle controller."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE) -> None:
        super().__init__(message)
        self.message = message


class SessionNotConnected(SessionError):
    def __init__(self) -> None:
        super().__init__("Session is not connected")


class RateLimitExceeded(SessionError):
    def __init__(self) -> None:
        super().__init__("Too many session requests. Try again later.")


class PersistenceError(Exception):
    """Raised by the persistence mirror when a read or write fails."""


_TRANSPORT_MESSAGES = {
    DisconnectReason.LOGGED_OUT: "Session logged out. Scan the QR code again.",
    DisconnectReason.TIMED_OUT: "Connection timed out. Try again.",
    DisconnectReason.RESTART_REQUIRED: "Restart required. Try again.",
}


def translate_error(error: BaseException, context: str) -> Exception:
    """Map *error* to an exception that is safe to hand to callers.

    Validation failures and session errors pass through unchanged; transport
    failures with a known close code get a specific message; anything else
    becomes the generic internal error.  The original exception is logged.
    """
    if isinstance(error, (ValidationFailure, SessionError)):
        return error

    logger.error("Error in %s: %r", context, error, exc_info=error)

    if isinstance(error, TransportError):
        message = _TRANSPORT_MESSAGES.get(
            error.status_code, "WhatsApp connection error. Try again."
        )
        return SessionError(message)

    return SessionError()
