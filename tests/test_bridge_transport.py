"""Tests for the HTTP bridge transport, using httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from whatsapp_sessions.transport.base import (
    ConnectionUpdate,
    DisconnectReason,
    QRIssued,
    TransportError,
    event_from_payload,
)
from whatsapp_sessions.transport.bridge import BridgeTransport


class Sidecar:
    """Records requests and answers them like the protocol sidecar."""

    def __init__(self, status_code: int = 200, body: dict | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.body = body or {"ok": True}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


def _bridge(sidecar: Sidecar) -> BridgeTransport:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(sidecar), base_url="http://bridge.test"
    )
    return BridgeTransport(
        base_url="http://bridge.test",
        token="secret",
        callback_base_url="http://app.test/",
        client=client,
    )


class Recorder:
    def __init__(self) -> None:
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)


@pytest.mark.asyncio
async def test_connect_registers_callback():
    sidecar = Sidecar()
    bridge = _bridge(sidecar)

    connection = await bridge.connect("/tmp/auth/tenant_1_temp_1", Recorder())

    request = sidecar.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/connections"
    body = json.loads(request.content)
    assert body["connection_id"] == connection.connection_id
    assert body["auth_dir"] == "/tmp/auth/tenant_1_temp_1"
    assert body["callback_url"] == (
        f"http://app.test/webhook/transport/{connection.connection_id}"
    )
    await bridge.aclose()


@pytest.mark.asyncio
async def test_connect_failure_raises_transport_error():
    bridge = _bridge(Sidecar(status_code=503, body={"status_code": 503}))

    with pytest.raises(TransportError) as exc_info:
        await bridge.connect("/tmp/auth/x", Recorder())
    assert exc_info.value.status_code == 503
    assert bridge.dispatch("anything", {"type": "creds"}) is False


@pytest.mark.asyncio
async def test_dispatch_delivers_events_in_order():
    bridge = _bridge(Sidecar())
    recorder = Recorder()
    connection = await bridge.connect("/tmp/auth/x", recorder)

    assert bridge.dispatch(connection.connection_id, {"type": "qr", "qr": "2@abc"})
    assert bridge.dispatch(
        connection.connection_id,
        {"type": "connection", "connection": "open", "identity": "5511999999999:3@s.whatsapp.net"},
    )
    await asyncio.sleep(0.01)

    assert recorder.events == [QRIssued(payload="2@abc"), ConnectionUpdate(state="open")]
    assert connection.identity == "5511999999999:3@s.whatsapp.net"
    await bridge.aclose()


@pytest.mark.asyncio
async def test_close_event_forgets_connection():
    bridge = _bridge(Sidecar())
    recorder = Recorder()
    connection = await bridge.connect("/tmp/auth/x", recorder)

    bridge.dispatch(
        connection.connection_id,
        {"type": "connection", "connection": "close", "status_code": 515},
    )
    await asyncio.sleep(0.01)

    assert recorder.events == [
        ConnectionUpdate(state="close", status_code=DisconnectReason.RESTART_REQUIRED)
    ]
    assert bridge.dispatch(connection.connection_id, {"type": "creds"}) is False
    await bridge.aclose()


@pytest.mark.asyncio
async def test_send_and_logout_hit_sidecar():
    sidecar = Sidecar(body={"id": "MSG-1", "status": "sent"})
    bridge = _bridge(sidecar)
    connection = await bridge.connect("/tmp/auth/x", Recorder())

    receipt = await connection.send_message("5511988887777@s.whatsapp.net", "Hi")
    await connection.logout()
    await connection.close()

    assert receipt == {"id": "MSG-1", "status": "sent"}
    paths = [(r.method, r.url.path) for r in sidecar.requests[1:]]
    cid = connection.connection_id
    assert paths == [
        ("POST", f"/connections/{cid}/messages"),
        ("POST", f"/connections/{cid}/logout"),
        ("DELETE", f"/connections/{cid}"),
    ]
    await bridge.aclose()


@pytest.mark.asyncio
async def test_network_error_becomes_transport_error():
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(unreachable), base_url="http://bridge.test"
    )
    bridge = BridgeTransport("http://bridge.test", "secret", "http://app.test", client=client)

    with pytest.raises(TransportError):
        await bridge.connect("/tmp/auth/x", Recorder())
    await client.aclose()


def test_verify_token():
    bridge = BridgeTransport(
        "http://bridge.test", "secret", "http://app.test", client=httpx.AsyncClient()
    )
    assert bridge.verify_token("secret")
    assert not bridge.verify_token("wrong")
    assert not bridge.verify_token(None)


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"type": "qr"},
        {"type": "connection", "connection": "sideways"},
        {"type": "unknown"},
    ],
)
def test_malformed_payload_rejected(payload):
    with pytest.raises(ValueError):
        event_from_payload(payload)
