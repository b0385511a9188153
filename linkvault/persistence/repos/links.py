from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.errors import MissingFieldError
from linkvault.domain.models import SecureLink


LINK_STATUSES = ("all", "used", "unused", "unsold", "sold")
MAX_PAGE_SIZE = 100


@dataclass
class LinkPage:
    items: list[SecureLink]
    pagination: dict[str, Any]
    statistics: dict[str, int] = field(default_factory=dict)


def _status_filter(status: str) -> list[Any]:
    if status == "used":
        return [SecureLink.is_used.is_(True)]
    if status in ("unused", "unsold"):
        return [SecureLink.is_used.is_(False), SecureLink.is_sold.is_(False)]
    if status == "sold":
        return [SecureLink.is_sold.is_(True)]
    return []


async def count_links(
    session: AsyncSession,
    owner_id: str,
    *,
    is_used: bool | None = None,
    is_sold: bool | None = None,
) -> int:
    stmt = select(func.count(SecureLink.id)).where(SecureLink.owner_id == owner_id)
    if is_used is not None:
        stmt = stmt.where(SecureLink.is_used.is_(is_used))
    if is_sold is not None:
        stmt = stmt.where(SecureLink.is_sold.is_(is_sold))
    return int((await session.execute(stmt)).scalar_one())


async def link_statistics(session: AsyncSession, owner_id: str | None = None) -> dict[str, int]:
    # One aggregate pass; used and sold are counted independently.
    stmt = select(
        func.count(SecureLink.id),
        func.coalesce(func.sum(case((SecureLink.is_used.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(case((SecureLink.is_sold.is_(True), 1), else_=0)), 0),
    )
    if owner_id is not None:
        stmt = stmt.where(SecureLink.owner_id == owner_id)
    total, used, sold = (await session.execute(stmt)).one()
    return {
        "total": int(total),
        "used": int(used),
        "unused": int(total) - int(used),
        "sold": int(sold),
        "unsold": int(total) - int(sold),
    }


async def list_links(
    session: AsyncSession,
    owner_id: str | None,
    *,
    status: str = "all",
    page: int = 1,
    limit: int = 10,
) -> LinkPage:
    """Page through an owner's links, newest first. ``owner_id=None`` spans all owners."""
    if status not in LINK_STATUSES:
        raise MissingFieldError(f"status must be one of: {', '.join(LINK_STATUSES)}")
    page = max(1, int(page))
    limit = min(max(1, int(limit)), MAX_PAGE_SIZE)
    conditions = _status_filter(status)
    if owner_id is not None:
        conditions.append(SecureLink.owner_id == owner_id)

    total_items = int(
        (await session.execute(select(func.count(SecureLink.id)).where(*conditions))).scalar_one()
    )
    rows = (
        await session.execute(
            select(SecureLink)
            .where(*conditions)
            .order_by(SecureLink.created_at.desc(), SecureLink.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    total_pages = math.ceil(total_items / limit) if total_items else 0
    pagination = {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total_items,
        "items_per_page": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
    return LinkPage(
        items=list(rows),
        pagination=pagination,
        statistics=await link_statistics(session, owner_id),
    )
