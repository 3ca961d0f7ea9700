"""Email service — sends session alert emails via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from whatsapp_sessions.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Sends operator alerts using the configured SMTP server."""

    async def send_session_alert(
        self, to_email: str, tenant_id: int, session_id: str, reason: str
    ) -> None:
        """Tell an operator that a tenant's WhatsApp session went down.

        Parameters
        ----------
        to_email:
            Recipient email address.
        tenant_id:
            Tenant whose number is no longer connected.
        session_id:
            Identifier of the session that ended.
        reason:
            Short human-readable cause (logout, retries exhausted, ...).
        """
        subject = f"WhatsApp disconnected for tenant {tenant_id} — {settings.app_name}"
        body = (
            f"The WhatsApp session {session_id} of tenant {tenant_id} "
            f"is no longer connected.\n\n"
            f"Reason: {reason}\n\n"
            "A new QR code scan is required to reconnect the number.\n\n"
            f"— {settings.app_name}"
        )

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.email_from
        msg["To"] = to_email
        msg.set_content(body)

        logger.info("Sending session alert for tenant %s to %s", tenant_id, to_email)

        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username or None,
            password=settings.smtp_password or None,
            start_tls=True,
        )
