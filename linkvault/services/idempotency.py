from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.core.errors import DuplicateEventError
from linkvault.domain.models import IdempotencyRecord


logger = logging.getLogger(__name__)

SCOPE_PAYMENT = "payment"
SCOPE_SALE = "sale"


def _expires_at(now: datetime) -> datetime:
    # Retention bounds the table; the unique key only needs to outlive gateway redelivery.
    days = max(1, int(get_settings().idempotency_retention_days))
    return now + timedelta(days=days)


async def get_record(session: AsyncSession, transaction_id: str) -> IdempotencyRecord | None:
    result = await session.execute(
        select(IdempotencyRecord).where(IdempotencyRecord.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()


async def ensure_unprocessed(session: AsyncSession, transaction_id: str) -> None:
    """Raise DuplicateEventError carrying the prior result when the id was seen before."""
    record = await get_record(session, transaction_id)
    if record is not None:
        raise DuplicateEventError(record.result_json or {})


def add_record(
    session: AsyncSession,
    *,
    transaction_id: str,
    scope: str,
    result: dict[str, Any],
    now: datetime | None = None,
) -> IdempotencyRecord:
    # Added to the caller's transaction; the unique constraint fires at flush/commit.
    created_at = now or utc_now()
    record = IdempotencyRecord(
        transaction_id=transaction_id,
        scope=scope,
        result_json=result,
        created_at=created_at,
        expires_at=_expires_at(created_at),
    )
    session.add(record)
    return record


async def prune_expired(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Remove expired idempotency records to keep storage bounded.
    result = await session.execute(
        delete(IdempotencyRecord).where(IdempotencyRecord.expires_at < (now or utc_now()))
    )
    await session.commit()
    deleted = result.rowcount or 0
    logger.info("idempotency_records_pruned count=%s", deleted)
    return deleted
