"""Session registry — the authoritative map of live sessions.

The registry answers "what is connected right now".  It sits on a
:class:`SessionStore`, in memory by default; a deployment running several
processes can plug in a shared store by implementing the same interface.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from whatsapp_sessions.transport.base import Connection

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    QR_PENDING = "qr_pending"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


LIVE_STATES = (SessionState.CONNECTING, SessionState.QR_PENDING, SessionState.CONNECTED)


@dataclass(eq=False)
class SessionRecord:
    """Runtime state of one session.  Compared by identity, never by value."""

    identifier: str
    tenant_id: int
    phone: str | None = None
    connection: Connection | None = None
    qr: str | None = None
    state: SessionState = SessionState.CONNECTING
    retry_count: int = 0

    def summary(self) -> dict[str, Any]:
        """Public view, without the connection handle or the QR payload."""
        return {
            "session_id": self.identifier,
            "tenant_id": self.tenant_id,
            "phone": self.phone or "",
            "status": self.state.value,
            "has_qr": self.qr is not None,
        }


class SessionStore(ABC):
    """Keyed storage behind the registry.

    Every method is atomic with respect to the others.
    """

    @abstractmethod
    def get(self, identifier: str) -> SessionRecord | None: ...

    @abstractmethod
    def values(self) -> list[SessionRecord]: ...

    @abstractmethod
    def put(self, identifier: str, record: SessionRecord) -> None: ...

    @abstractmethod
    def pop(self, identifier: str, expected: SessionRecord | None = None) -> SessionRecord | None:
        """Remove *identifier*; when *expected* is given, only if it is still stored."""

    @abstractmethod
    def move(self, old: str, new: str, expected: SessionRecord) -> bool:
        """Rekey *expected* from *old* to *new* if it is still stored at *old*."""


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> SessionRecord | None:
        with self._lock:
            return self._records.get(identifier)

    def values(self) -> list[SessionRecord]:
        with self._lock:
            return list(self._records.values())

    def put(self, identifier: str, record: SessionRecord) -> None:
        with self._lock:
            self._records[identifier] = record

    def pop(self, identifier: str, expected: SessionRecord | None = None) -> SessionRecord | None:
        with self._lock:
            current = self._records.get(identifier)
            if current is None or (expected is not None and current is not expected):
                return None
            return self._records.pop(identifier)

    def move(self, old: str, new: str, expected: SessionRecord) -> bool:
        with self._lock:
            if self._records.get(old) is not expected:
                return False
            del self._records[old]
            expected.identifier = new
            self._records[new] = expected
            return True


class SessionRegistry:
    """Lookup and mutation of live :class:`SessionRecord` objects."""

    def __init__(self, store: SessionStore | None = None) -> None:
        self._store = store or InMemorySessionStore()

    def get(self, identifier: str) -> SessionRecord | None:
        return self._store.get(identifier)

    def list(self) -> list[SessionRecord]:
        return self._store.values()

    def list_for_tenant(self, tenant_id: int) -> list[SessionRecord]:
        return [record for record in self._store.values() if record.tenant_id == tenant_id]

    def upsert(self, record: SessionRecord) -> None:
        self._store.put(record.identifier, record)

    def remove(self, identifier: str, expected: SessionRecord | None = None) -> SessionRecord | None:
        return self._store.pop(identifier, expected)

    def is_live(self, record: SessionRecord) -> bool:
        """``True`` while *record* is the entry stored under its identifier."""
        return self._store.get(record.identifier) is record

    def rekey(self, record: SessionRecord, new_identifier: str) -> bool:
        """Move *record* to *new_identifier* in one step.

        Readers see the record under either the old or the new key, never
        under neither.  Returns ``False`` if the record is no longer live.
        """
        old_identifier = record.identifier
        if old_identifier == new_identifier:
            return True
        moved = self._store.move(old_identifier, new_identifier, record)
        if moved:
            logger.info("Session %s rekeyed to %s", old_identifier, new_identifier)
        return moved

    def __len__(self) -> int:
        return len(self._store.values())
