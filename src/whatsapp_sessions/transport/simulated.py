"""In-process transport — drive the session lifecycle without WhatsApp.

Connections do nothing on their own; the caller scripts them by calling
:meth:`SimulatedConnection.issue_qr`, :meth:`~SimulatedConnection.open` and
:meth:`~SimulatedConnection.drop`.  Used by the chat simulator and tests.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from whatsapp_sessions.transport.base import (
    Connection,
    ConnectionUpdate,
    DisconnectReason,
    EventHandler,
    MessageReceived,
    QRIssued,
    Transport,
    TransportError,
    TransportEvent,
)

logger = logging.getLogger(__name__)

_message_ids = itertools.count(1)


class SimulatedConnection(Connection):
    def __init__(self, auth_location: str, handler: EventHandler) -> None:
        self.auth_location = auth_location
        self._handler = handler
        self._identity: str | None = None
        self._lock = asyncio.Lock()
        self.sent: list[tuple[str, str]] = []
        self.logged_out = False
        self.closed = False

    @property
    def identity(self) -> str | None:
        return self._identity

    async def emit(self, event: TransportEvent) -> None:
        """Deliver *event*; events of one connection never overlap."""
        async with self._lock:
            await self._handler(event)

    async def issue_qr(self, payload: str = "2@simulated-qr-challenge") -> None:
        await self.emit(QRIssued(payload=payload))

    async def open(self, identity: str) -> None:
        self._identity = identity
        await self.emit(ConnectionUpdate(state="open"))

    async def drop(self, status_code: int | None) -> None:
        self.closed = True
        await self.emit(ConnectionUpdate(state="close", status_code=status_code))

    async def receive(self, remote_jid: str, text: str) -> None:
        await self.emit(
            MessageReceived(remote_jid=remote_jid, message_id=f"SIM-IN-{next(_message_ids)}", text=text)
        )

    async def send_message(self, jid: str, text: str) -> dict[str, Any]:
        if self.closed:
            raise TransportError("connection closed", DisconnectReason.CONNECTION_CLOSED)
        self.sent.append((jid, text))
        return {"id": f"SIM-{next(_message_ids)}", "to": jid, "status": "sent"}

    async def logout(self) -> None:
        if self.closed:
            raise TransportError("connection closed", DisconnectReason.CONNECTION_CLOSED)
        self.logged_out = True
        await self.drop(DisconnectReason.LOGGED_OUT)

    async def close(self) -> None:
        self.closed = True


class SimulatedTransport(Transport):
    """Hands out :class:`SimulatedConnection` objects and remembers them."""

    def __init__(self) -> None:
        self.connections: list[SimulatedConnection] = []
        self.connect_error: Exception | None = None

    async def connect(self, auth_location: str, handler: EventHandler) -> SimulatedConnection:
        if self.connect_error is not None:
            raise self.connect_error
        connection = SimulatedConnection(auth_location, handler)
        self.connections.append(connection)
        logger.debug("Simulated connection #%d opened at %s", len(self.connections), auth_location)
        return connection

    @property
    def latest(self) -> SimulatedConnection:
        return self.connections[-1]
