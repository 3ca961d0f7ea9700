"""Shared fixtures: in-memory database, simulated transport, controller."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from whatsapp_sessions.database.repository import SessionRepository
from whatsapp_sessions.models.session import Base
from whatsapp_sessions.sessions.auth_state import FileAuthStateStore
from whatsapp_sessions.sessions.controller import SessionLifecycleController
from whatsapp_sessions.transport.simulated import SimulatedTransport


def fake_render_qr(payload: str) -> str:
    """Skip PNG rendering in lifecycle tests."""
    return f"data:image/png;base64,{payload}"


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory DB per test."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def transport() -> SimulatedTransport:
    return SimulatedTransport()


@pytest.fixture
def auth_store(tmp_path) -> FileAuthStateStore:
    return FileAuthStateStore(tmp_path / "auth")


@pytest_asyncio.fixture
async def controller(transport, repository, auth_store):
    ctrl = SessionLifecycleController(
        transport,
        repository,
        auth_store,
        retry_delay=0,
        render_qr=fake_render_qr,
    )
    yield ctrl
    await ctrl.aclose()
