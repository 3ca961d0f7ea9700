"""HTTP-level tests for the session API and the transport webhook."""

import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from whatsapp_sessions.api.routes import register_error_handlers
from whatsapp_sessions.api.routes import router as sessions_router
from whatsapp_sessions.transport.base import ConnectionUpdate
from whatsapp_sessions.transport.bridge import BridgeTransport
from whatsapp_sessions.webhook.handler import router as webhook_router

PREFIX = "/api/whatsapp/tenants/1/sessions"


def _app(controller, transport) -> FastAPI:
    app = FastAPI()
    app.include_router(sessions_router)
    app.include_router(webhook_router)
    register_error_handlers(app)
    app.state.controller = controller
    app.state.transport = transport
    return app


@pytest_asyncio.fixture
async def client(controller, transport):
    app = _app(controller, transport)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


# ── Sessions ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_session(client):
    resp = await client.post(PREFIX, json={})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["session_id"].startswith("tenant_1_temp_")
    assert body["status"] == "connecting"


@pytest.mark.asyncio
async def test_qr_then_status(client, transport):
    session_id = (await client.post(PREFIX, json={})).json()["session_id"]
    await transport.latest.issue_qr("2@abc")

    resp = await client.get(f"{PREFIX}/{session_id}/qr")
    assert resp.json() == {
        "session_id": session_id,
        "status": "qr_pending",
        "qr": "data:image/png;base64,2@abc",
    }

    resp = await client.get(f"{PREFIX}/{session_id}/status")
    assert resp.json()["has_qr"] is True


@pytest.mark.asyncio
async def test_unknown_session_reports_disconnected(client):
    resp = await client.get(f"{PREFIX}/tenant_1_5511987654321/status")
    assert resp.status_code == 200
    assert resp.json()["status"] == "disconnected"


@pytest.mark.asyncio
async def test_foreign_tenant_session_forbidden(client):
    resp = await client.get(f"{PREFIX}/tenant_2_5511987654321/status")
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_validation_failure_is_400(client):
    resp = await client.post(PREFIX, json={"phone": "123"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "phone"


@pytest.mark.asyncio
async def test_send_on_unconnected_session_is_409(client):
    await client.post(PREFIX, json={"phone": "11987654321"})
    resp = await client.post(
        f"{PREFIX}/tenant_1_5511987654321/send", json={"to": "11988887777", "message": "Oi"}
    )
    assert resp.status_code == 409
    assert resp.json() == {"error": "Session is not connected"}


@pytest.mark.asyncio
async def test_send_message(client, transport):
    await client.post(PREFIX, json={"phone": "11987654321"})
    await transport.latest.open("5511987654321:1@s.whatsapp.net")

    resp = await client.post(
        f"{PREFIX}/tenant_1_5511987654321/send", json={"to": "11988887777", "message": "Oi"}
    )
    assert resp.status_code == 200
    assert resp.json()["result"]["status"] == "sent"


@pytest.mark.asyncio
async def test_internal_error_is_generic_500(client, transport):
    transport.connect_error = RuntimeError("password=hunter2")
    resp = await client.post(PREFIX, json={})
    assert resp.status_code == 500
    assert "hunter2" not in resp.text


@pytest.mark.asyncio
async def test_rate_limit_is_429(client):
    for _ in range(10):
        await client.post(PREFIX, json={})
    resp = await client.post(PREFIX, json={})
    assert resp.status_code == 429


@pytest.mark.asyncio
async def test_disconnect_and_list(client):
    session_id = (await client.post(PREFIX, json={})).json()["session_id"]

    listed = (await client.get(PREFIX)).json()["sessions"]
    assert [s["session_id"] for s in listed] == [session_id]

    resp = await client.delete(f"{PREFIX}/{session_id}")
    assert resp.json() == {"success": True}
    assert (await client.get("/api/whatsapp/sessions")).json() == {"sessions": []}


@pytest.mark.asyncio
async def test_disconnect_all(client):
    await client.post(PREFIX, json={})
    resp = await client.delete(PREFIX)
    assert resp.json() == {"success": True, "disconnected": 1}


@pytest.mark.asyncio
async def test_compliance(client):
    resp = await client.post(
        "/api/whatsapp/tenants/1/compliance",
        json={"phone": "15551234567", "message": "Click here for a free offer"},
    )
    body = resp.json()
    assert body["compliant"] is False
    assert len(body["warnings"]) == 2


@pytest.mark.asyncio
async def test_metrics_snapshot(client):
    await client.post(PREFIX, json={})
    body = (await client.get("/api/whatsapp/metrics")).json()
    assert body["total_sessions"] == 1
    assert body["active_sessions"] == 1


# ── Webhook ──────────────────────────────────────────────

class Recorder:
    def __init__(self) -> None:
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)


@pytest_asyncio.fixture
async def bridge():
    sidecar = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
        base_url="http://bridge.test",
    )
    transport = BridgeTransport("http://bridge.test", "secret", "http://app.test", client=sidecar)
    yield transport
    await transport.aclose()
    await sidecar.aclose()


@pytest_asyncio.fixture
async def webhook_client(controller, bridge):
    app = _app(controller, bridge)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_webhook_rejects_bad_token(webhook_client, bridge):
    connection = await bridge.connect("/tmp/auth/x", Recorder())
    resp = await webhook_client.post(
        f"/webhook/transport/{connection.connection_id}",
        json={"type": "creds"},
        headers={"X-Bridge-Token": "wrong"},
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_webhook_unknown_connection(webhook_client):
    resp = await webhook_client.post(
        "/webhook/transport/nope", json={"type": "creds"}, headers={"X-Bridge-Token": "secret"}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_webhook_malformed_event(webhook_client, bridge):
    connection = await bridge.connect("/tmp/auth/x", Recorder())
    resp = await webhook_client.post(
        f"/webhook/transport/{connection.connection_id}",
        json={"type": "connection", "connection": "sideways"},
        headers={"X-Bridge-Token": "secret"},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_delivers_event(webhook_client, bridge):
    recorder = Recorder()
    connection = await bridge.connect("/tmp/auth/x", recorder)
    resp = await webhook_client.post(
        f"/webhook/transport/{connection.connection_id}",
        json={"type": "connection", "connection": "open"},
        headers={"X-Bridge-Token": "secret"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

    await asyncio.sleep(0.01)
    assert recorder.events == [ConnectionUpdate(state="open")]


@pytest.mark.asyncio
async def test_webhook_disabled_without_bridge(client):
    resp = await client.post("/webhook/transport/abc", json={"type": "creds"})
    assert resp.status_code == 404
