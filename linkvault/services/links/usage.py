from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.errors import LinkNotFoundError, MissingFieldError
from linkvault.domain.models import SecureLink
from linkvault.domain.ownership import PartnerOwned, owner_from_storage
from linkvault.services.links.validator import get_link_by_token
from linkvault.services.notifications.outbox import (
    EVENT_LINK_SOLD,
    EVENT_LINK_USED,
    enqueue_notification,
)
from linkvault.services.notifications.queue import dispatch_notification_jobs


logger = logging.getLogger(__name__)


def _json_safe(values: dict[str, Any]) -> dict[str, Any]:
    # Sale context is stored in a JSON column; datetimes go in as ISO strings.
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in values.items()}


async def _require_link(session: AsyncSession, token: str) -> SecureLink:
    cleaned = (token or "").strip()
    if not cleaned:
        raise MissingFieldError("token is required")
    link = await get_link_by_token(session, cleaned)
    if link is None:
        raise LinkNotFoundError("Link not found")
    return link


async def mark_used(
    session: AsyncSession,
    token: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Flip a link to used. Returns False when it was already used.

    The flip is a single conditional UPDATE, so concurrent callers race to
    last-write-wins on the same values and only the winner queues a notification.
    """
    link = await _require_link(session, token)
    used_at = now or utc_now()
    result = await session.execute(
        update(SecureLink)
        .where(SecureLink.id == link.id, SecureLink.is_used.is_(False))
        .values(is_used=True, used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        logger.debug("link_already_used token=%s", link.token)
        return False

    job_ids: list[str] = []
    owner = owner_from_storage(link.owner_id)
    if isinstance(owner, PartnerOwned):
        job = enqueue_notification(
            session,
            event_type=EVENT_LINK_USED,
            owner_id=owner.owner_id,
            payload={
                "token": link.token,
                "session_id": link.session_ref,
                "customer_email": (link.metadata_json or {}).get("customer_email"),
                "used_at": used_at.isoformat(),
            },
        )
        job_ids.append(job.id)
    await session.commit()
    await session.refresh(link)
    logger.info("link_marked_used token=%s owner_id=%s", link.token, link.owner_id)
    await dispatch_notification_jobs(job_ids)
    return True


async def mark_sold(
    session: AsyncSession,
    token: str,
    sale_metadata: dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
    expires_at: datetime | None = None,
    notify: bool = True,
    commit: bool = True,
) -> bool:
    """Flip a link to sold and merge the sale context into its metadata.

    Returns False when the link was already sold. ``expires_at`` replaces the
    link expiry as part of the same write (customer sales start a fresh window).
    With ``commit=False`` the change is only flushed and no notification is sent.
    """
    link = await _require_link(session, token)
    if link.is_sold:
        return False
    sold_at = now or utc_now()
    merged = dict(link.metadata_json or {})
    merged.update(_json_safe(sale_metadata or {}))
    merged["sold"] = True
    merged["sold_date"] = sold_at.isoformat()
    values: dict[str, Any] = {"is_sold": True, "sold_at": sold_at, "metadata_json": merged}
    if expires_at is not None:
        values["expires_at"] = expires_at
    result = await session.execute(
        update(SecureLink)
        .where(SecureLink.id == link.id, SecureLink.is_sold.is_(False))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        logger.debug("link_already_sold token=%s", link.token)
        return False

    job_ids: list[str] = []
    owner = owner_from_storage(link.owner_id)
    if notify and commit and isinstance(owner, PartnerOwned):
        job = enqueue_notification(
            session,
            event_type=EVENT_LINK_SOLD,
            owner_id=owner.owner_id,
            payload={
                "token": link.token,
                "customer_email": merged.get("customer_email"),
                "plan": merged.get("plan"),
                "quantity": 1,
            },
        )
        job_ids.append(job.id)
    if commit:
        await session.commit()
    else:
        await session.flush()
    await session.refresh(link)
    logger.info("link_marked_sold token=%s owner_id=%s", link.token, link.owner_id)
    await dispatch_notification_jobs(job_ids)
    return True
