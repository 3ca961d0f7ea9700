"""Session notifier — the sink for session state changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from whatsapp_sessions.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStateChanged:
    session_id: str
    tenant_id: int
    state: str
    reason: str | None = None
    terminal: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class SessionNotifier:
    """Receives state-change events from the lifecycle controller.

    Every event is logged.  Terminal disconnects (logout, retries exhausted)
    are additionally emailed to ``alert_email`` when one is configured.
    Delivery problems are logged and never propagate to the caller.
    """

    def __init__(
        self, email_service: EmailService | None = None, alert_email: str = ""
    ) -> None:
        self._email_service = email_service
        self._alert_email = alert_email
        self.history: list[SessionStateChanged] = []

    async def publish(self, event: SessionStateChanged) -> None:
        self.history.append(event)
        del self.history[:-100]
        logger.info(
            "Session %s (tenant %s) → %s%s",
            event.session_id,
            event.tenant_id,
            event.state,
            f" [{event.reason}]" if event.reason else "",
        )

        if not (event.terminal and self._alert_email and self._email_service):
            return
        try:
            await self._email_service.send_session_alert(
                to_email=self._alert_email,
                tenant_id=event.tenant_id,
                session_id=event.session_id,
                reason=event.reason or event.state,
            )
        except Exception:
            logger.exception("Failed to send session alert for %s", event.session_id)
