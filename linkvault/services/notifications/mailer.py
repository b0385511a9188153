from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.message import EmailMessage
import logging
import smtplib

from linkvault.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    body: str


def _send_sync(message: OutboundEmail, settings: Settings) -> None:
    email = EmailMessage()
    email["From"] = settings.smtp_from
    email["To"] = message.to
    email["Subject"] = message.subject
    email.set_content(message.body)
    if settings.smtp_use_ssl:
        client: smtplib.SMTP = smtplib.SMTP_SSL(
            settings.smtp_host or "", settings.smtp_port, timeout=settings.smtp_timeout_s
        )
    else:
        client = smtplib.SMTP(settings.smtp_host or "", settings.smtp_port, timeout=settings.smtp_timeout_s)
    with client:
        if not settings.smtp_use_ssl:
            client.starttls()
        if settings.smtp_username:
            client.login(settings.smtp_username, settings.smtp_password or "")
        client.send_message(email)


async def send_email(message: OutboundEmail) -> None:
    """Send one plain-text email through the configured SMTP relay.

    smtplib is blocking, so the call runs in a worker thread. Errors propagate.
    """
    settings = get_settings()
    await asyncio.to_thread(_send_sync, message, settings)
    logger.info("email_sent subject=%s", message.subject)
