"""Session repository — durable mirror of the live session registry."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from whatsapp_sessions.models.session import WhatsAppSession, utcnow
from whatsapp_sessions.sessions.errors import PersistenceError
from whatsapp_sessions.sessions.identity import parse_identifier

# sqlite3 raises OverflowError for out-of-range integers before SQLAlchemy wraps anything.
_DB_ERRORS = (SQLAlchemyError, OverflowError)

_WRITABLE_FIELDS = frozenset(
    {
        "status",
        "phone",
        "qr_code",
        "retry_count",
        "last_activity",
        "connected_at",
        "disconnected_at",
    }
)


class SessionRepository:
    """Encapsulates all database access for persisted sessions.

    Each call runs in its own short transaction.  Database errors are raised
    as :class:`PersistenceError`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_status(self, identifier: str, **fields: Any) -> None:
        """Create or update the row for *identifier*.

        Tenant and phone of a new row are taken from the identifier itself.
        """
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown session fields: {sorted(unknown)}")
        parsed = parse_identifier(identifier)
        if parsed is None:
            raise ValueError(f"not a session identifier: {identifier!r}")

        fields.setdefault("last_activity", utcnow())
        try:
            async with self._session_factory() as session:
                stmt = select(WhatsAppSession).where(WhatsAppSession.session_id == identifier)
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    row = WhatsAppSession(
                        session_id=identifier,
                        tenant_id=parsed.tenant_id,
                        phone=None if parsed.is_temporary else parsed.phone,
                    )
                    session.add(row)
                for name, value in fields.items():
                    setattr(row, name, value)
                await session.commit()
        except _DB_ERRORS as exc:
            raise PersistenceError(f"upsert failed for {identifier}") from exc

    async def get(self, identifier: str) -> WhatsAppSession | None:
        try:
            async with self._session_factory() as session:
                stmt = select(WhatsAppSession).where(WhatsAppSession.session_id == identifier)
                return (await session.execute(stmt)).scalar_one_or_none()
        except _DB_ERRORS as exc:
            raise PersistenceError(f"lookup failed for {identifier}") from exc

    async def load_by_statuses(self, statuses: Iterable[str]) -> list[WhatsAppSession]:
        """Return every row whose status is one of *statuses*, oldest first."""
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(WhatsAppSession)
                    .where(WhatsAppSession.status.in_(list(statuses)))
                    .order_by(WhatsAppSession.created_at, WhatsAppSession.id)
                )
                return list((await session.execute(stmt)).scalars())
        except _DB_ERRORS as exc:
            raise PersistenceError("loading sessions by status failed") from exc

    async def find_disconnected_before(self, cutoff: datetime) -> list[WhatsAppSession]:
        """Rows that have been disconnected since before *cutoff*."""
        try:
            async with self._session_factory() as session:
                stmt = select(WhatsAppSession).where(
                    WhatsAppSession.status == "disconnected",
                    WhatsAppSession.disconnected_at.is_not(None),
                    WhatsAppSession.disconnected_at < cutoff,
                )
                return list((await session.execute(stmt)).scalars())
        except _DB_ERRORS as exc:
            raise PersistenceError("loading inactive sessions failed") from exc

    async def delete_by_identifier(self, identifier: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(WhatsAppSession).where(WhatsAppSession.session_id == identifier)
                )
                await session.commit()
                return result.rowcount > 0
        except _DB_ERRORS as exc:
            raise PersistenceError(f"delete failed for {identifier}") from exc
