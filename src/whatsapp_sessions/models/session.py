"""SQLAlchemy WhatsApp session model."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class WhatsAppSession(Base):
    """Durable shadow of a live session's state transitions.

    Written on every transition and read back at startup to restore the
    sessions that were live when the process stopped.
    """

    __tablename__ = "whatsapp_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    phone: Mapped[str | None] = mapped_column(
        String(32), nullable=True, doc="Unknown until the QR code is scanned"
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="connecting")
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    disconnected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_whatsapp_sessions_tenant_id", "tenant_id"),
        Index("ix_whatsapp_sessions_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<WhatsAppSession id={self.id} session_id={self.session_id!r} "
            f"status={self.status!r}>"
        )
