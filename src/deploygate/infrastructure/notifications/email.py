"""Outbound email transports."""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.text import MIMEText
from email.utils import make_msgid

import structlog

from deploygate.config import SmtpSettings
from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.models.notification import DeliveryChannel, EmailMessage
from deploygate.domain.ports.services import EmailTransport
from deploygate.infrastructure.observability.metrics import NOTIFICATION_DELIVERIES_TOTAL


logger = structlog.get_logger(__name__)


class SmtpEmailTransport(EmailTransport):
    """Sends plain-text mail over SMTP.

    ``smtplib`` is blocking, so every send runs in a worker thread.
    """

    def __init__(self, settings: SmtpSettings) -> None:
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    async def send(self, message: EmailMessage) -> str:
        try:
            message_id = await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            NOTIFICATION_DELIVERIES_TOTAL.labels(
                channel=DeliveryChannel.EMAIL.value, result="failed"
            ).inc()
            raise UpstreamUnavailable(f"SMTP delivery to {message.to} failed: {exc}") from exc

        NOTIFICATION_DELIVERIES_TOTAL.labels(
            channel=DeliveryChannel.EMAIL.value, result="sent"
        ).inc()
        logger.info("email_sent", to=message.to, message_id=message_id)
        return message_id

    def _send_sync(self, message: EmailMessage) -> str:
        settings = self._settings
        mime = MIMEText(message.body)
        mime["Subject"] = message.subject
        mime["From"] = settings.from_address
        mime["To"] = message.to
        mime["Message-ID"] = make_msgid(domain=settings.from_address.rpartition("@")[2] or None)

        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds) as server:
            if settings.use_tls:
                server.starttls()
            if settings.username:
                server.login(settings.username, settings.password)
            server.send_message(mime)
        return str(mime["Message-ID"])


class InMemoryEmailTransport(EmailTransport):
    """Collects messages instead of sending them; for development and tests."""

    def __init__(self, configured: bool = True) -> None:
        self._configured = configured
        self._outbox: list[EmailMessage] = []
        self._failing: set[str] = set()

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def outbox(self) -> list[EmailMessage]:
        return list(self._outbox)

    def fail_for(self, address: str) -> None:
        """Make every send to ``address`` raise."""
        self._failing.add(address)

    async def send(self, message: EmailMessage) -> str:
        if message.to in self._failing:
            raise UpstreamUnavailable(f"Mailbox {message.to} unavailable")
        self._outbox.append(message)
        logger.debug("email_captured", to=message.to, subject=message.subject)
        return f"memory-{len(self._outbox)}"
