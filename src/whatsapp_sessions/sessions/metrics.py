"""Service metrics — passive counters fed by the lifecycle controller."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from whatsapp_sessions.sessions.registry import SessionState

if TYPE_CHECKING:
    from whatsapp_sessions.sessions.registry import SessionRegistry


class ServiceMetrics:
    """Process-wide tallies, exported through a private Prometheus registry.

    Active and connected session counts are read from the session registry
    when sampled, so they never drift from the live map.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._sessions = registry
        self.started_at = time.time()
        self.last_cleanup: datetime | None = None

        self.total_sessions = 0
        self.failed_connections = 0
        self.messages_sent = 0
        self.persistence_errors = 0

        self.collector = CollectorRegistry()
        self._total_sessions = Counter(
            "whatsapp_sessions_created_total",
            "Sessions created since process start",
            registry=self.collector,
        )
        self._failed_connections = Counter(
            "whatsapp_failed_connections_total",
            "Sessions given up after exhausting retries or failing to connect",
            registry=self.collector,
        )
        self._messages_sent = Counter(
            "whatsapp_messages_sent_total",
            "Text messages handed to the transport",
            registry=self.collector,
        )
        self._persistence_errors = Counter(
            "whatsapp_persistence_errors_total",
            "Session mirror writes that failed and were skipped",
            registry=self.collector,
        )
        active = Gauge(
            "whatsapp_sessions_active",
            "Sessions currently present in the registry",
            registry=self.collector,
        )
        active.set_function(lambda: len(self._sessions.list()))
        connected = Gauge(
            "whatsapp_sessions_connected",
            "Sessions currently connected",
            registry=self.collector,
        )
        connected.set_function(self._connected_count)

    def _connected_count(self) -> int:
        return sum(
            1 for record in self._sessions.list() if record.state is SessionState.CONNECTED
        )

    # ── Observers ────────────────────────────────────────

    def session_created(self) -> None:
        self.total_sessions += 1
        self._total_sessions.inc()

    def connection_failed(self) -> None:
        self.failed_connections += 1
        self._failed_connections.inc()

    def message_sent(self) -> None:
        self.messages_sent += 1
        self._messages_sent.inc()

    def persistence_error(self) -> None:
        self.persistence_errors += 1
        self._persistence_errors.inc()

    def cleanup_ran(self) -> None:
        self.last_cleanup = datetime.now(UTC)

    # ── Reads ────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "active_sessions": len(self._sessions.list()),
            "connected_sessions": self._connected_count(),
            "failed_connections": self.failed_connections,
            "messages_sent": self.messages_sent,
            "persistence_errors": self.persistence_errors,
            "last_cleanup": self.last_cleanup.isoformat() if self.last_cleanup else None,
            "uptime_seconds": round(time.time() - self.started_at, 3),
        }

    def render(self) -> bytes:
        """Prometheus text exposition of the counters."""
        return generate_latest(self.collector)
