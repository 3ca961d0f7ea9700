"""Transport webhook — receives connection events posted by the sidecar."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request, Response

from whatsapp_sessions.transport.bridge import BridgeTransport

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


# ──────────────────────────────────────────────────────────────
# POST /webhook/transport/{connection_id} — connection events
# ──────────────────────────────────────────────────────────────
@router.post("/webhook/transport/{connection_id}")
async def receive_transport_event(
    connection_id: str,
    request: Request,
    x_bridge_token: str | None = Header(None),
) -> Response:
    """Hand one sidecar event to its connection.

    Expected payloads::

        {"type": "qr", "qr": "2@..."}
        {"type": "connection", "connection": "open", "identity": "5511...:3@s.whatsapp.net"}
        {"type": "connection", "connection": "close", "status_code": 515}
        {"type": "message", "remote_jid": "...", "message_id": "...", "text": "..."}
        {"type": "creds"}
    """
    transport = getattr(request.app.state, "transport", None)
    if not isinstance(transport, BridgeTransport):
        return Response(content="Not Found", status_code=404)

    if not transport.verify_token(x_bridge_token):
        logger.warning("Transport event rejected (bad token) for %s", connection_id)
        return Response(content="Forbidden", status_code=403)

    try:
        body = await request.json()
    except ValueError:
        return Response(content="Invalid JSON", status_code=400)
    if not isinstance(body, dict):
        return Response(content="Invalid event", status_code=400)

    try:
        delivered = transport.dispatch(connection_id, body)
    except ValueError as exc:
        logger.warning("Malformed transport event for %s: %s", connection_id, exc)
        return Response(content="Invalid event", status_code=400)

    if not delivered:
        logger.debug("Event for unknown connection %s dropped", connection_id)
        return Response(content="Unknown connection", status_code=404)

    return Response(content='{"status":"ok"}', media_type="application/json")
