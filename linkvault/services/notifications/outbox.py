from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.domain.models import NotificationJob


EVENT_LINK_USED = "link_used"
EVENT_LINK_SOLD = "link_sold"
EVENT_LINKS_PURCHASED = "links_purchased"
EVENT_CUSTOMER_LINKS = "customer_links"

NOTIFICATION_EVENT_TYPES = frozenset(
    {EVENT_LINK_USED, EVENT_LINK_SOLD, EVENT_LINKS_PURCHASED, EVENT_CUSTOMER_LINKS}
)

STATUS_QUEUED = "queued"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


def enqueue_notification(
    session: AsyncSession,
    *,
    event_type: str,
    owner_id: str,
    payload: dict[str, Any],
    recipient_email: str | None = None,
) -> NotificationJob:
    """Add an outbox row to the caller's transaction; nothing is sent here."""
    if event_type not in NOTIFICATION_EVENT_TYPES:
        raise ValueError(f"unknown notification event type: {event_type}")
    now = utc_now()
    job = NotificationJob(
        id=uuid4().hex,
        event_type=event_type,
        owner_id=owner_id,
        recipient_email=recipient_email,
        payload_json=payload,
        status=STATUS_QUEUED,
        attempt_count=0,
        next_attempt_at=now,
        created_at=now,
    )
    session.add(job)
    return job


def next_backoff(attempt_count: int, *, now: datetime | None = None) -> datetime:
    # Exponential backoff: base, 2*base, 4*base, ...
    settings = get_settings()
    base = max(1, int(settings.notify_backoff_base_s))
    delay = base * (2 ** max(0, attempt_count - 1))
    return (now or utc_now()) + timedelta(seconds=delay)


async def due_notification_jobs(
    session: AsyncSession,
    *,
    limit: int,
    now: datetime | None = None,
) -> list[tuple[str, int]]:
    # (job id, attempt count) for queued jobs whose backoff has elapsed, oldest first.
    current = now or utc_now()
    rows = (
        await session.execute(
            select(NotificationJob.id, NotificationJob.attempt_count)
            .where(
                NotificationJob.status == STATUS_QUEUED,
                or_(NotificationJob.next_attempt_at.is_(None), NotificationJob.next_attempt_at <= current),
            )
            .order_by(NotificationJob.created_at.asc())
            .limit(max(1, limit))
        )
    ).all()
    return [(job_id, int(attempts or 0)) for job_id, attempts in rows]


async def due_notification_job_ids(
    session: AsyncSession,
    *,
    limit: int,
    now: datetime | None = None,
) -> list[str]:
    return [job_id for job_id, _ in await due_notification_jobs(session, limit=limit, now=now)]
