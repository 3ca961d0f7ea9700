"""Transport capability — abstract interface to the WhatsApp wire client.

A :class:`Transport` opens one :class:`Connection` per session.  Each
connection delivers its events, one at a time and in order, to the handler
registered when it was opened.  Events form a small tagged union of
dataclasses; handlers dispatch on their type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Literal


class DisconnectReason(IntEnum):
    """Close status codes reported by the WhatsApp multi-device protocol."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    TIMED_OUT = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515  # stream errored before authentication completed


class TransportError(Exception):
    """Raised by transports when a connect/send/logout call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ── Events ───────────────────────────────────────────────


@dataclass(frozen=True)
class QRIssued:
    """The transport produced a QR challenge for the user to scan."""

    payload: str
    kind: Literal["qr"] = field(default="qr", init=False)


@dataclass(frozen=True)
class ConnectionUpdate:
    """The connection changed state; ``status_code`` is set on ``close``."""

    state: Literal["connecting", "open", "close"]
    status_code: int | None = None
    kind: Literal["connection"] = field(default="connection", init=False)


@dataclass(frozen=True)
class MessageReceived:
    remote_jid: str
    message_id: str = ""
    text: str | None = None
    kind: Literal["message"] = field(default="message", init=False)


@dataclass(frozen=True)
class CredentialsUpdated:
    """Authentication material changed and was persisted by the transport."""

    kind: Literal["creds"] = field(default="creds", init=False)


TransportEvent = QRIssued | ConnectionUpdate | MessageReceived | CredentialsUpdated

EventHandler = Callable[[TransportEvent], Awaitable[None]]


def event_from_payload(payload: dict[str, Any]) -> TransportEvent:
    """Decode a JSON event posted by a transport bridge.

    Raises ``ValueError`` for unknown or incomplete payloads.
    """
    kind = payload.get("type")
    if kind == "qr":
        qr = payload.get("qr")
        if not qr:
            raise ValueError("qr event without payload")
        return QRIssued(payload=str(qr))
    if kind == "connection":
        state = payload.get("connection")
        if state not in ("connecting", "open", "close"):
            raise ValueError(f"unknown connection state {state!r}")
        status_code = payload.get("status_code")
        return ConnectionUpdate(
            state=state, status_code=int(status_code) if status_code is not None else None
        )
    if kind == "message":
        return MessageReceived(
            remote_jid=str(payload.get("remote_jid", "")),
            message_id=str(payload.get("message_id", "")),
            text=payload.get("text"),
        )
    if kind == "creds":
        return CredentialsUpdated()
    raise ValueError(f"unknown event type {kind!r}")


# ── Capability interfaces ────────────────────────────────


class Connection(ABC):
    """Handle to one live transport connection."""

    @property
    @abstractmethod
    def identity(self) -> str | None:
        """JID of the authenticated account, once the connection is open."""

    @abstractmethod
    async def send_message(self, jid: str, text: str) -> dict[str, Any]:
        """Send a text message and return the transport's receipt."""

    @abstractmethod
    async def logout(self) -> None:
        """Log the linked device out, invalidating its credentials."""

    @abstractmethod
    async def close(self) -> None:
        """Drop the connection but keep credentials for a later reconnect."""


class Transport(ABC):
    """Factory for connections."""

    @abstractmethod
    async def connect(self, auth_location: str, handler: EventHandler) -> Connection:
        """Open a connection using the auth state stored at *auth_location*.

        *handler* receives every event of the new connection, sequentially.
        """

    async def aclose(self) -> None:
        """Release transport-wide resources."""
