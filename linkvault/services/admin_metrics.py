from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.domain.models import NotificationJob, Partner, SecureLink
from linkvault.persistence.repos.links import link_statistics
from linkvault.persistence.repos.transactions import revenue_by_type
from linkvault.services.crypto.field_cipher import keys_from_settings
from linkvault.services.partners import partner_profile


async def platform_metrics(session: AsyncSession) -> dict[str, Any]:
    # Back-office snapshot across every owner, starter links included.
    partner_count = int((await session.execute(select(func.count(Partner.id)))).scalar_one())
    notifications = {
        status: int(count)
        for status, count in (
            await session.execute(
                select(NotificationJob.status, func.count(NotificationJob.id)).group_by(NotificationJob.status)
            )
        ).all()
    }
    return {
        "partners": partner_count,
        "links": await link_statistics(session),
        "revenue": await revenue_by_type(session),
        "notifications": notifications,
    }


async def list_partners_with_counts(session: AsyncSession) -> list[dict[str, Any]]:
    """Decrypted partner rows joined with their link usage counts."""
    counts_stmt = select(
        SecureLink.owner_id,
        func.count(SecureLink.id),
        func.coalesce(func.sum(case((SecureLink.is_used.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(case((SecureLink.is_sold.is_(True), 1), else_=0)), 0),
    ).group_by(SecureLink.owner_id)
    counts = {
        owner_id: {"total": int(total), "used": int(used), "sold": int(sold)}
        for owner_id, total, used, sold in (await session.execute(counts_stmt)).all()
    }
    partners = (await session.execute(select(Partner).order_by(Partner.created_at.desc()))).scalars().all()
    keys = keys_from_settings()
    rows: list[dict[str, Any]] = []
    for partner in partners:
        profile = partner_profile(partner, keys)
        profile["links"] = counts.get(partner.id, {"total": 0, "used": 0, "sold": 0})
        rows.append(profile)
    return rows
