from __future__ import annotations

from decimal import Decimal
import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.domain.models import PartnerTransaction


TRANSACTION_TYPES = ("purchase", "sale")


async def list_transactions(
    session: AsyncSession,
    *,
    owner_id: str | None = None,
    transaction_type: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[PartnerTransaction], dict[str, Any]]:
    # Ledger is append-only; newest entries first.
    page = max(1, int(page))
    limit = min(max(1, int(limit)), 100)
    conditions: list[Any] = []
    if owner_id is not None:
        conditions.append(PartnerTransaction.owner_id == owner_id)
    if transaction_type is not None:
        conditions.append(PartnerTransaction.transaction_type == transaction_type)
    total_items = int(
        (await session.execute(select(func.count(PartnerTransaction.id)).where(*conditions))).scalar_one()
    )
    rows = (
        await session.execute(
            select(PartnerTransaction)
            .where(*conditions)
            .order_by(PartnerTransaction.transaction_date.desc(), PartnerTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()
    total_pages = math.ceil(total_items / limit) if total_items else 0
    return list(rows), {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total_items,
        "items_per_page": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


async def revenue_by_type(session: AsyncSession, owner_id: str | None = None) -> dict[str, Decimal]:
    stmt = select(
        PartnerTransaction.transaction_type,
        func.coalesce(func.sum(PartnerTransaction.total_amount), 0),
    ).where(PartnerTransaction.status == "completed")
    if owner_id is not None:
        stmt = stmt.where(PartnerTransaction.owner_id == owner_id)
    stmt = stmt.group_by(PartnerTransaction.transaction_type)
    totals = {kind: Decimal("0.00") for kind in TRANSACTION_TYPES}
    for kind, amount in (await session.execute(stmt)).all():
        totals[kind] = Decimal(str(amount)).quantize(Decimal("0.01"))
    return totals
