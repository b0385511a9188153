from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.errors import IssuanceError, LinkValidationError
from linkvault.domain.models import SecureLink
from linkvault.domain.ownership import LinkOwner


logger = logging.getLogger(__name__)

DEFAULT_BATCH_NO = "basicstarter"


def generate_token() -> str:
    # uuid4 hex tokens are globally unique; the unique index backs that up.
    return uuid4().hex


def generate_session_ref(prefix: str | None, index: int) -> str:
    stem = prefix or "chat"
    return f"{stem}-{uuid4().hex[:12]}-{index}"


async def issue_batch(
    session: AsyncSession,
    owner: LinkOwner,
    count: int,
    *,
    expiry: timedelta | None = None,
    session_id_prefix: str | None = None,
    batch_no: str | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> list[SecureLink]:
    """Insert ``count`` fresh links for ``owner`` in a single storage operation.

    With ``expiry`` omitted the links never expire. With ``commit=False`` the batch is
    only flushed so the caller can enlist it in a larger transaction. Rows written
    before a storage failure are not retracted.
    """
    if count < 1:
        raise LinkValidationError("count must be at least 1")
    now = utc_now()
    expires_at = now + expiry if expiry is not None else None
    links = [
        SecureLink(
            token=generate_token(),
            owner_id=owner.storage_id,
            session_ref=generate_session_ref(session_id_prefix, index),
            batch_no=batch_no or DEFAULT_BATCH_NO,
            is_used=False,
            is_sold=False,
            expires_at=expires_at,
            metadata_json=dict(metadata or {}),
            created_at=now,
        )
        for index in range(count)
    ]
    session.add_all(links)
    try:
        if commit:
            await session.commit()
        else:
            await session.flush()
    except SQLAlchemyError as exc:
        logger.exception("link_batch_insert_failed owner_id=%s count=%s", owner.storage_id, count)
        raise IssuanceError("failed to persist secure link batch") from exc
    logger.info(
        "link_batch_issued owner_id=%s count=%s expires_at=%s",
        owner.storage_id,
        count,
        expires_at.isoformat() if expires_at else None,
    )
    return links
