"""Bridge transport — async HTTP client for a WhatsApp protocol sidecar.

The sidecar owns the actual multi-device socket.  This side asks it to open,
log out or close connections and to send messages; the sidecar posts every
connection event back to ``/webhook/transport/{connection_id}``, where
:meth:`BridgeTransport.dispatch` hands it to the right connection.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import httpx

from whatsapp_sessions.transport.base import (
    Connection,
    ConnectionUpdate,
    EventHandler,
    Transport,
    TransportError,
    TransportEvent,
    event_from_payload,
)

logger = logging.getLogger(__name__)


class BridgeConnection(Connection):
    """One sidecar connection.  Events are queued and handled one at a time."""

    def __init__(
        self, client: httpx.AsyncClient, connection_id: str, handler: EventHandler
    ) -> None:
        self.connection_id = connection_id
        self._client = client
        self._handler = handler
        self._identity: str | None = None
        self._queue: asyncio.Queue[TransportEvent | None] = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())

    @property
    def identity(self) -> str | None:
        return self._identity

    def deliver(self, event: TransportEvent, identity: str | None = None) -> None:
        if identity:
            self._identity = identity
        self._queue.put_nowait(event)

    def stop(self) -> None:
        """Finish the queued events, then stop the worker."""
        self._queue.put_nowait(None)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self._handler(event)
            except Exception:
                logger.exception("Handler failed for %s event on %s", event.kind, self.connection_id)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"bridge request {method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            status_code = None
            try:
                status_code = resp.json().get("status_code")
            except ValueError:
                pass
            raise TransportError(
                f"bridge returned {resp.status_code} for {method} {path}", status_code
            )
        return resp

    async def send_message(self, jid: str, text: str) -> dict[str, Any]:
        resp = await self.request(
            "POST",
            f"/connections/{self.connection_id}/messages",
            json={"jid": jid, "text": text},
        )
        return resp.json()

    async def logout(self) -> None:
        await self.request("POST", f"/connections/{self.connection_id}/logout")

    async def close(self) -> None:
        try:
            await self.request("DELETE", f"/connections/{self.connection_id}")
        finally:
            self.stop()


class BridgeTransport(Transport):
    """Opens connections through the sidecar's REST API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        callback_base_url: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._callback_base_url = callback_base_url.rstrip("/")
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
        self._connections: dict[str, BridgeConnection] = {}

    def verify_token(self, token: str | None) -> bool:
        return bool(token) and token == self._token

    async def connect(self, auth_location: str, handler: EventHandler) -> BridgeConnection:
        connection_id = uuid.uuid4().hex
        connection = BridgeConnection(self._client, connection_id, handler)
        # Registered first: the sidecar may post events before it answers.
        self._connections[connection_id] = connection
        try:
            await connection.request(
                "POST",
                "/connections",
                json={
                    "connection_id": connection_id,
                    "auth_dir": auth_location,
                    "callback_url": f"{self._callback_base_url}/webhook/transport/{connection_id}",
                },
            )
        except TransportError:
            self._connections.pop(connection_id, None)
            connection.stop()
            raise
        logger.info("Bridge connection %s opened", connection_id)
        return connection

    def dispatch(self, connection_id: str, payload: dict[str, Any]) -> bool:
        """Route a posted event to its connection.

        Returns ``False`` for unknown connections; raises ``ValueError`` for
        malformed payloads.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        event = event_from_payload(payload)
        connection.deliver(event, identity=payload.get("identity"))
        if isinstance(event, ConnectionUpdate) and event.state == "close":
            self._connections.pop(connection_id, None)
            connection.stop()
        return True

    async def aclose(self) -> None:
        for connection in self._connections.values():
            connection.stop()
        self._connections.clear()
        if self._owns_client:
            await self._client.aclose()
