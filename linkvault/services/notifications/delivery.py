from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.domain.models import NotificationJob, Partner
from linkvault.services.crypto.field_cipher import decrypt_or_raw, keys_from_settings
from linkvault.services.notifications.mailer import OutboundEmail, send_email
from linkvault.services.notifications.outbox import (
    EVENT_CUSTOMER_LINKS,
    EVENT_LINK_SOLD,
    EVENT_LINK_USED,
    EVENT_LINKS_PURCHASED,
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_QUEUED,
    next_backoff,
)


logger = logging.getLogger(__name__)

EmailSender = Callable[[OutboundEmail], Awaitable[None]]


class RecipientUnavailable(Exception):
    """The job has no resolvable recipient; delivery is not retried."""


def _link_url(token: str) -> str:
    base = get_settings().app_base_url.rstrip("/")
    return f"{base}/secure/chat/{token}"


def render_message(event_type: str, payload: dict[str, Any], recipient: str) -> OutboundEmail:
    brand = payload.get("brand_name") or "your brand"
    if event_type == EVENT_LINK_USED:
        return OutboundEmail(
            to=recipient,
            subject=f"A secure link from {brand} was used",
            body=(
                "One of your secure links has just been redeemed.\n\n"
                f"Link: {payload.get('token')}\n"
                f"Used at: {payload.get('used_at')}\n"
            ),
        )
    if event_type == EVENT_LINK_SOLD:
        return OutboundEmail(
            to=recipient,
            subject=f"New sale on {brand}",
            body=(
                "A customer purchased access through your site.\n\n"
                f"Customer: {payload.get('customer_email') or 'Unknown'}\n"
                f"Plan: {payload.get('plan') or '-'}\n"
                f"Quantity: {payload.get('quantity', 1)}\n"
                f"Amount: {payload.get('amount', '0')}\n"
            ),
        )
    if event_type == EVENT_LINKS_PURCHASED:
        return OutboundEmail(
            to=recipient,
            subject="Your secure link purchase is ready",
            body=(
                f"{payload.get('quantity')} secure links were added to your account "
                f"({payload.get('plan') or 'link package'}).\n"
                f"Transaction: {payload.get('transaction_id')}\n"
            ),
        )
    if event_type == EVENT_CUSTOMER_LINKS:
        tokens = payload.get("tokens") or []
        lines = "\n".join(f"  {index + 1}. {_link_url(token)}" for index, token in enumerate(tokens))
        expiry = payload.get("expires_at")
        return OutboundEmail(
            to=recipient,
            subject=f"Your secure links from {brand}",
            body=(
                "Thank you for your purchase. Your secure links:\n\n"
                f"{lines}\n\n"
                + (f"Links expire at {expiry}.\n" if expiry else "")
            ),
        )
    raise ValueError(f"unknown notification event type: {event_type}")


async def resolve_recipient(session: AsyncSession, job: NotificationJob) -> str:
    if job.recipient_email:
        return job.recipient_email
    partner = await session.get(Partner, job.owner_id)
    if partner is None:
        raise RecipientUnavailable(f"partner {job.owner_id} not found")
    email = decrypt_or_raw(partner.email, keys_from_settings())
    if not email:
        raise RecipientUnavailable(f"partner {job.owner_id} has no email")
    return email


async def deliver_notification_job(
    session: AsyncSession,
    job_id: str,
    *,
    sender: EmailSender = send_email,
) -> NotificationJob | None:
    """Attempt delivery of one outbox row and record the outcome on it."""
    settings = get_settings()
    job = await session.get(NotificationJob, job_id)
    if job is None or job.status != STATUS_QUEUED:
        return None
    now = utc_now()
    job.attempt_count = int(job.attempt_count or 0) + 1
    try:
        recipient = await resolve_recipient(session, job)
        message = render_message(job.event_type, job.payload_json or {}, recipient)
        await sender(message)
    except RecipientUnavailable as exc:
        job.status = STATUS_FAILED
        job.last_error = str(exc)
        job.next_attempt_at = None
        logger.warning("notification_recipient_unavailable job_id=%s error=%s", job.id, exc)
    except Exception as exc:  # noqa: BLE001 - delivery errors are recorded on the job and retried.
        job.last_error = f"{type(exc).__name__}: {exc}"
        if job.attempt_count >= max(1, int(settings.notify_max_attempts)):
            job.status = STATUS_FAILED
            job.next_attempt_at = None
        else:
            job.next_attempt_at = next_backoff(job.attempt_count, now=now)
        logger.warning(
            "notification_delivery_failed job_id=%s attempt=%s status=%s",
            job.id,
            job.attempt_count,
            job.status,
            exc_info=True,
        )
    else:
        job.status = STATUS_DELIVERED
        job.delivered_at = now
        job.last_error = None
        job.next_attempt_at = None
        logger.info("notification_delivered job_id=%s event_type=%s", job.id, job.event_type)
    await session.commit()
    return job
