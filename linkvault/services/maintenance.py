from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.domain.models import SecureLink
from linkvault.services.idempotency import prune_expired


logger = logging.getLogger(__name__)


async def purge_expired_links(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Delete links whose expiry passed, in bounded batches.

    Links with no expiry are never touched.
    """
    settings = get_settings()
    cutoff = (now or utc_now()) - timedelta(hours=max(0, int(settings.link_purge_grace_hours)))
    batch_size = max(1, int(settings.maintenance_batch_size))
    total = 0
    while True:
        ids = (
            await session.execute(
                select(SecureLink.id)
                .where(SecureLink.expires_at.is_not(None), SecureLink.expires_at < cutoff)
                .order_by(SecureLink.id)
                .limit(batch_size)
            )
        ).scalars().all()
        if not ids:
            break
        result = await session.execute(
            delete(SecureLink)
            .where(SecureLink.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        total += result.rowcount or len(ids)
        if len(ids) < batch_size:
            break
    logger.info("expired_links_purged count=%s cutoff=%s", total, cutoff.isoformat())
    return total


async def prune_idempotency_records(session: AsyncSession, *, now: datetime | None = None) -> int:
    return await prune_expired(session, now=now)


async def run_maintenance(session: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    # Single entry point for the worker cron and the maintenance scripts.
    current = now or utc_now()
    return {
        "links_purged": await purge_expired_links(session, now=current),
        "idempotency_pruned": await prune_idempotency_records(session, now=current),
    }
