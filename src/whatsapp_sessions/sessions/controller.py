"""Connection lifecycle controller — one WhatsApp connection per tenant.

The controller owns every :class:`SessionRecord`.  It opens transport
connections, reacts to their events (QR issued, open, close), migrates
temporary identifiers once the scanned phone number is known, reconnects
within a bounded retry budget and mirrors every transition to the database.

State machine
-------------
``connecting → qr_pending → connected → disconnected``

A close event ends the current connection.  Depending on its reason code
the session is either torn down for good (logout, timeout, retries
exhausted) or removed from the registry and restarted after
``retry_delay`` seconds with its retry counter incremented.

Public operations raise only :class:`ValidationFailure` or
:class:`SessionError`; internal details are logged, never returned.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from whatsapp_sessions.database.repository import SessionRepository
from whatsapp_sessions.services.notifier import SessionNotifier, SessionStateChanged
from whatsapp_sessions.sessions.auth_state import AuthStateStore
from whatsapp_sessions.sessions.compliance import ComplianceResult, compliance_check
from whatsapp_sessions.sessions.errors import (
    PersistenceError,
    RateLimitExceeded,
    SessionError,
    SessionNotConnected,
    translate_error,
)
from whatsapp_sessions.sessions.identity import (
    derive_identifier,
    parse_identifier,
    phone_from_jid,
    to_jid,
)
from whatsapp_sessions.sessions.metrics import ServiceMetrics
from whatsapp_sessions.sessions.qr import render_qr_data_url
from whatsapp_sessions.sessions.rate_limiter import RateLimiter
from whatsapp_sessions.sessions.registry import SessionRecord, SessionRegistry, SessionState
from whatsapp_sessions.sessions.validation import (
    ValidationFailure,
    validate_message,
    validate_phone_number,
    validate_session_identifier,
    validate_tenant_id,
)
from whatsapp_sessions.transport.base import (
    ConnectionUpdate,
    CredentialsUpdated,
    DisconnectReason,
    MessageReceived,
    QRIssued,
    Transport,
    TransportEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_RETENTION = timedelta(hours=24)

RESTORABLE_STATUSES = (
    SessionState.CONNECTING.value,
    SessionState.CONNECTED.value,
    SessionState.QR_PENDING.value,
)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StartResult:
    session_id: str
    qr: str | None
    status: str


class SessionLifecycleController:
    """Owns the per-tenant session state machine.

    Parameters
    ----------
    transport:
        Opens connections to the WhatsApp network.
    repository:
        Durable mirror; writes are best effort.
    auth_store:
        Where each session's credentials live between connections.
    """

    def __init__(
        self,
        transport: Transport,
        repository: SessionRepository,
        auth_store: AuthStateStore,
        *,
        registry: SessionRegistry | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: ServiceMetrics | None = None,
        notifier: SessionNotifier | None = None,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        retention: timedelta = DEFAULT_RETENTION,
        render_qr: Callable[[str], str] = render_qr_data_url,
    ) -> None:
        self._transport = transport
        self._repository = repository
        self._auth_store = auth_store
        self._registry = registry or SessionRegistry()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._metrics = metrics or ServiceMetrics(self._registry)
        self._notifier = notifier or SessionNotifier()
        self._max_retry_attempts = max_retry_attempts
        self._retry_delay = retry_delay
        self._retention = retention
        self._render_qr = render_qr
        self._retry_tasks: set[asyncio.Task[None]] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def metrics(self) -> ServiceMetrics:
        return self._metrics

    # ══════════════════════════════════════════════════════
    # Public operations
    # ══════════════════════════════════════════════════════

    async def start_session(self, tenant_id: Any, phone: str | None = None) -> StartResult:
        """Start (or return) the tenant's WhatsApp session.

        Without *phone* a temporary session is opened and the number is
        learnt when the QR code is scanned.  Calling again while the session
        is live returns its current state instead of opening a new
        connection.
        """
        tenant = validate_tenant_id(tenant_id)
        normalized = validate_phone_number(phone) if phone else None
        if not self._rate_limiter.admit(tenant):
            raise RateLimitExceeded()
        record, _ = await self._start(tenant, normalized)
        return self._result(record)

    def get_qr(self, identifier: str) -> str | None:
        record = self._registry.get(identifier)
        return record.qr if record else None

    def get_status(self, identifier: str) -> str:
        record = self._registry.get(identifier)
        return record.state.value if record else SessionState.DISCONNECTED.value

    async def disconnect_session(self, identifier: str) -> bool:
        """Log the session out and forget its credentials.

        Returns ``False`` when *identifier* has no live session.
        """
        record = self._registry.get(identifier)
        if record is None or self._registry.remove(identifier, record) is None:
            logger.warning("Session %s not found", identifier)
            return False

        record.state = SessionState.DISCONNECTED
        record.qr = None
        if record.connection is not None:
            try:
                await record.connection.logout()
            except Exception as exc:
                logger.warning("Logout failed for %s: %r", identifier, exc)

        await self._mirror(
            identifier, status=record.state.value, qr_code=None, disconnected_at=_now()
        )
        self._delete_auth_state(identifier)
        await self._notify(record, reason="disconnected on request")
        logger.info("Session %s disconnected", identifier)
        return True

    async def disconnect_all_for_tenant(self, tenant_id: Any) -> int:
        tenant = validate_tenant_id(tenant_id)
        disconnected = 0
        for record in self._registry.list_for_tenant(tenant):
            if await self.disconnect_session(record.identifier):
                disconnected += 1
        logger.info("%d sessions of tenant %s disconnected", disconnected, tenant)
        return disconnected

    async def send_message(self, identifier: str, recipient: str, text: str) -> dict[str, Any]:
        """Send *text* to *recipient* through a connected session."""
        try:
            validate_session_identifier(identifier)
            to = validate_phone_number(recipient, field="to")
            body = validate_message(text)

            record = self._registry.get(identifier)
            if (
                record is None
                or record.state is not SessionState.CONNECTED
                or record.connection is None
            ):
                raise SessionNotConnected()

            result = await record.connection.send_message(to_jid(to), body)
        except Exception as exc:
            raise translate_error(exc, f"send_message({identifier})") from None

        self._metrics.message_sent()
        await self._mirror(record.identifier, last_activity=_now())
        return result

    def list_sessions(self) -> list[dict[str, Any]]:
        return [record.summary() for record in self._registry.list()]

    def list_sessions_for_tenant(self, tenant_id: Any) -> list[dict[str, Any]]:
        tenant = validate_tenant_id(tenant_id)
        return [record.summary() for record in self._registry.list_for_tenant(tenant)]

    def compliance_check(
        self, tenant_id: Any, phone: str, message: str | None = None
    ) -> ComplianceResult:
        tenant = validate_tenant_id(tenant_id)
        return compliance_check(tenant, phone, message, rate_limiter=self._rate_limiter)

    # ══════════════════════════════════════════════════════
    # Recovery and housekeeping
    # ══════════════════════════════════════════════════════

    async def restore_sessions(self) -> int:
        """Restart the sessions that were live when the process last stopped.

        Rows that cannot be restored, or that another session of the same
        tenant supersedes, are marked disconnected.  Returns the number of
        connections opened.
        """
        try:
            rows = await self._repository.load_by_statuses(RESTORABLE_STATUSES)
        except PersistenceError:
            self._metrics.persistence_error()
            logger.exception("Could not load sessions to restore")
            return 0

        logger.info("Found %d sessions to restore", len(rows))
        restored = 0
        for row in rows:
            # Phone taken verbatim: the auth location is keyed by this identifier.
            parsed = parse_identifier(row.session_id)
            if parsed is None:
                logger.warning("Could not restore session %s: invalid identifier", row.session_id)
                continue
            phone = None if parsed.is_temporary else parsed.phone
            try:
                record, created = await self._start(parsed.tenant_id, phone)
            except (ValidationFailure, SessionError) as exc:
                logger.warning("Could not restore session %s: %s", row.session_id, exc)
                await self._mark_disconnected(row.session_id)
                continue

            if created:
                restored += 1
            if record.identifier != row.session_id:
                await self._mark_disconnected(row.session_id)

        logger.info("Restored %d sessions", restored)
        return restored

    async def cleanup_inactive_sessions(self, now: datetime | None = None) -> int:
        """Delete rows (and credentials) disconnected longer than the retention."""
        self._rate_limiter.sweep()
        cutoff = (now or _now()) - self._retention
        try:
            rows = await self._repository.find_disconnected_before(cutoff)
        except PersistenceError:
            self._metrics.persistence_error()
            logger.exception("Could not load inactive sessions")
            return 0

        removed = 0
        for row in rows:
            if self._registry.get(row.session_id) is not None:
                continue
            try:
                await self._repository.delete_by_identifier(row.session_id)
            except PersistenceError:
                self._metrics.persistence_error()
                logger.exception("Could not delete inactive session %s", row.session_id)
                continue
            self._delete_auth_state(row.session_id)
            removed += 1

        self._metrics.cleanup_ran()
        logger.info("Cleanup removed %d inactive sessions", removed)
        return removed

    async def drain_retries(self) -> None:
        """Wait until no reconnect is scheduled any more."""
        while self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop reconnecting and drop every connection, keeping credentials.

        Database rows keep their status so the sessions are restored on the
        next start.
        """
        for task in list(self._retry_tasks):
            task.cancel()
        await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

        for record in self._registry.list():
            self._registry.remove(record.identifier, record)
            if record.connection is None:
                continue
            try:
                await record.connection.close()
            except Exception as exc:
                logger.warning("Closing %s failed: %r", record.identifier, exc)
        await self._transport.aclose()

    # ══════════════════════════════════════════════════════
    # Starting connections
    # ══════════════════════════════════════════════════════

    async def _start(
        self, tenant_id: int, phone: str | None, retry_count: int = 0
    ) -> tuple[SessionRecord, bool]:
        """Open a connection unless the tenant already has a live session.

        Returns the live record and whether a new connection was opened.
        """
        existing = self._live_session_for(tenant_id, phone)
        if existing is not None:
            return existing, False

        identifier = derive_identifier(tenant_id, phone)
        record = SessionRecord(
            identifier=identifier, tenant_id=tenant_id, phone=phone, retry_count=retry_count
        )
        self._registry.upsert(record)
        self._metrics.session_created()
        logger.info("Starting WhatsApp session %s", identifier)

        try:
            await self._mirror(
                identifier,
                status=SessionState.CONNECTING.value,
                qr_code=None,
                retry_count=retry_count,
                disconnected_at=None,
            )
            auth_location = self._auth_store.ensure(identifier)
            connection = await self._transport.connect(
                auth_location, functools.partial(self._handle_event, record)
            )
        except Exception as exc:
            self._registry.remove(record.identifier, record)
            record.state = SessionState.DISCONNECTED
            self._metrics.connection_failed()
            await self._mark_disconnected(record.identifier)
            raise translate_error(exc, f"start_session({tenant_id})") from None

        record.connection = connection
        if not self._registry.is_live(record):
            # Disconnected while the connection was being opened.
            logger.info("Session %s ended before connecting; closing", record.identifier)
            await connection.close()
        return record, True

    def _live_session_for(self, tenant_id: int, phone: str | None) -> SessionRecord | None:
        live = self._registry.list_for_tenant(tenant_id)
        if not live:
            return None
        if phone is None:
            return live[0]
        for record in live:
            if record.phone == phone:
                return record
        raise ValidationFailure(
            "phone",
            "Tenant already has an active WhatsApp session; disconnect it before "
            "connecting another number",
        )

    @staticmethod
    def _result(record: SessionRecord) -> StartResult:
        return StartResult(session_id=record.identifier, qr=record.qr, status=record.state.value)

    # ══════════════════════════════════════════════════════
    # Transport events
    # ══════════════════════════════════════════════════════

    async def _handle_event(self, record: SessionRecord, event: TransportEvent) -> None:
        if not self._registry.is_live(record):
            logger.debug(
                "Ignoring %s event from stale connection %s", event.kind, record.identifier
            )
            return
        try:
            if isinstance(event, QRIssued):
                await self._on_qr(record, event)
            elif isinstance(event, ConnectionUpdate):
                if event.state == "open":
                    await self._on_open(record)
                elif event.state == "close":
                    await self._on_close(record, event.status_code)
                else:
                    logger.info("Connecting %s …", record.identifier)
                    record.state = SessionState.CONNECTING
            elif isinstance(event, MessageReceived):
                logger.info("Message received on %s from %s", record.identifier, event.remote_jid)
                await self._mirror(record.identifier, last_activity=_now())
            elif isinstance(event, CredentialsUpdated):
                logger.debug("Credentials updated for %s", record.identifier)
        except Exception:
            logger.exception("Error handling %s event for %s", event.kind, record.identifier)

    async def _on_qr(self, record: SessionRecord, event: QRIssued) -> None:
        qr = await asyncio.to_thread(self._render_qr, event.payload)
        if not self._registry.is_live(record):
            return
        record.qr = qr
        record.state = SessionState.QR_PENDING
        logger.info("QR code issued for %s", record.identifier)
        await self._mirror(record.identifier, status=record.state.value, qr_code=qr)
        await self._notify(record)

    async def _on_open(self, record: SessionRecord) -> None:
        record.state = SessionState.CONNECTED
        record.qr = None
        record.retry_count = 0
        connected_at = _now()
        logger.info("Connection open for %s", record.identifier)

        migrated_from = self._discover_identity(record) if record.phone is None else None

        await self._mirror(
            record.identifier,
            status=record.state.value,
            phone=record.phone,
            qr_code=None,
            retry_count=0,
            connected_at=connected_at,
            disconnected_at=None,
        )
        if migrated_from:
            await self._forget(migrated_from)
        await self._notify(record)

    def _discover_identity(self, record: SessionRecord) -> str | None:
        """Rekey a temporary session under the phone number that scanned it.

        Runs without suspending so the registry and the credential location
        move together.  Returns the identifier the session had before.
        """
        identity = record.connection.identity if record.connection else None
        phone = phone_from_jid(identity)
        if phone is None:
            logger.warning("Connected account unknown for %s", record.identifier)
            return None

        old_identifier = record.identifier
        new_identifier = derive_identifier(record.tenant_id, phone)
        if not self._registry.rekey(record, new_identifier):
            return None
        record.phone = phone
        if new_identifier == old_identifier:
            return None

        try:
            self._auth_store.move(old_identifier, new_identifier)
        except OSError:
            logger.exception("Could not move auth state %s → %s", old_identifier, new_identifier)
        logger.info("Session %s is now %s", old_identifier, new_identifier)
        return old_identifier

    async def _on_close(self, record: SessionRecord, status_code: int | None) -> None:
        identifier = record.identifier
        record.qr = None
        logger.info("Connection closed for %s (status %s)", identifier, status_code)

        if status_code == DisconnectReason.LOGGED_OUT:
            self._registry.remove(identifier, record)
            record.state = SessionState.DISCONNECTED
            await self._mark_disconnected(identifier)
            self._delete_auth_state(identifier)
            await self._notify(record, reason="logged out", terminal=True)
            return

        if status_code == DisconnectReason.TIMED_OUT:
            self._registry.remove(identifier, record)
            record.state = SessionState.DISCONNECTED
            await self._mark_disconnected(identifier)
            await self._notify(record, reason="timed out", terminal=True)
            return

        self._registry.remove(identifier, record)
        if record.retry_count >= self._max_retry_attempts:
            logger.error(
                "Giving up on %s after %d reconnect attempts", identifier, record.retry_count
            )
            record.state = SessionState.DISCONNECTED
            self._metrics.connection_failed()
            await self._mark_disconnected(identifier, retry_count=record.retry_count)
            await self._notify(record, reason="retries exhausted", terminal=True)
            return

        attempt = record.retry_count + 1
        record.state = SessionState.CONNECTING
        if status_code == DisconnectReason.RESTART_REQUIRED or record.phone is None:
            # Unauthenticated credentials are never reused.
            self._delete_auth_state(identifier)
        if record.phone is None:
            # The retry opens under a fresh temporary identifier.
            await self._forget(identifier)
        else:
            await self._mirror(identifier, status=record.state.value, retry_count=attempt)

        logger.warning(
            "Reconnecting tenant %s in %.1fs (attempt %d/%d)",
            record.tenant_id,
            self._retry_delay,
            attempt,
            self._max_retry_attempts,
        )
        self._schedule_retry(record.tenant_id, record.phone, attempt)

    # ══════════════════════════════════════════════════════
    # Retries
    # ══════════════════════════════════════════════════════

    def _schedule_retry(self, tenant_id: int, phone: str | None, attempt: int) -> None:
        task = asyncio.get_running_loop().create_task(
            self._retry_later(tenant_id, phone, attempt)
        )
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _retry_later(self, tenant_id: int, phone: str | None, attempt: int) -> None:
        await asyncio.sleep(self._retry_delay)
        try:
            await self._start(tenant_id, phone, retry_count=attempt)
        except ValidationFailure as exc:
            logger.warning("Reconnect for tenant %s skipped: %s", tenant_id, exc.message)
        except SessionError as exc:
            if attempt >= self._max_retry_attempts:
                logger.error("Reconnect for tenant %s failed for good: %s", tenant_id, exc)
                return
            logger.warning("Reconnect for tenant %s failed: %s", tenant_id, exc)
            self._schedule_retry(tenant_id, phone, attempt + 1)

    # ══════════════════════════════════════════════════════
    # Side effects (best effort)
    # ══════════════════════════════════════════════════════

    async def _mirror(self, identifier: str, **fields: Any) -> None:
        try:
            await self._repository.upsert_status(identifier, **fields)
        except PersistenceError:
            self._metrics.persistence_error()
            logger.warning("Session mirror write failed for %s", identifier, exc_info=True)

    async def _mark_disconnected(self, identifier: str, **fields: Any) -> None:
        await self._mirror(
            identifier,
            status=SessionState.DISCONNECTED.value,
            qr_code=None,
            disconnected_at=_now(),
            **fields,
        )

    async def _forget(self, identifier: str) -> None:
        try:
            await self._repository.delete_by_identifier(identifier)
        except PersistenceError:
            self._metrics.persistence_error()
            logger.warning("Could not delete session row %s", identifier, exc_info=True)

    def _delete_auth_state(self, identifier: str) -> None:
        try:
            self._auth_store.delete(identifier)
        except OSError:
            logger.exception("Could not delete auth state for %s", identifier)

    async def _notify(
        self, record: SessionRecord, reason: str | None = None, terminal: bool = False
    ) -> None:
        await self._notifier.publish(
            SessionStateChanged(
                session_id=record.identifier,
                tenant_id=record.tenant_id,
                state=record.state.value,
                reason=reason,
                terminal=terminal,
            )
        )
