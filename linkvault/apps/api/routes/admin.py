from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import get_db, require_admin
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.response import ApiModel, PaginationResponse
from linkvault.apps.api.routes.links import LinkListResponse, to_link_response
from linkvault.apps.api.routes.partners import (
    ProfileResponse,
    TransactionListResponse,
    to_transaction_response,
)
from linkvault.core.clock import ensure_utc
from linkvault.persistence.repos.links import list_links
from linkvault.persistence.repos.transactions import list_transactions
from linkvault.services.admin_metrics import list_partners_with_counts, platform_metrics


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


class AdminPartnerListResponse(ApiModel):
    partners: list[ProfileResponse]


class MetricsResponse(ApiModel):
    partners: int
    links: dict[str, int]
    revenue: dict[str, Decimal]
    notifications: dict[str, int]


@router.get("/partners", response_model=AdminPartnerListResponse)
async def admin_partners(db: AsyncSession = Depends(get_db)) -> AdminPartnerListResponse:
    rows: list[dict[str, Any]] = await list_partners_with_counts(db)
    partners = []
    for row in rows:
        row["created_at"] = ensure_utc(row.get("created_at"))
        partners.append(ProfileResponse(**row))
    return AdminPartnerListResponse(partners=partners)


@router.get("/transactions", response_model=TransactionListResponse)
async def admin_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    owner_id: str | None = Query(default=None, alias="ownerId"),
    transaction_type: str | None = Query(default=None, alias="type"),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    rows, pagination = await list_transactions(
        db,
        owner_id=owner_id,
        transaction_type=transaction_type,
        page=page,
        limit=limit,
    )
    return TransactionListResponse(
        transactions=[to_transaction_response(row) for row in rows],
        pagination=PaginationResponse(**pagination),
    )


@router.get("/metrics", response_model=MetricsResponse)
async def admin_metrics(db: AsyncSession = Depends(get_db)) -> MetricsResponse:
    return MetricsResponse(**await platform_metrics(db))


@router.get("/links", response_model=LinkListResponse)
async def admin_links(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: str = Query(default="all"),
    owner_id: str | None = Query(default=None, alias="ownerId"),
    db: AsyncSession = Depends(get_db),
) -> LinkListResponse:
    # Without ownerId the listing spans every owner, starter links included.
    result = await list_links(db, owner_id, status=status, page=page, limit=limit)
    return LinkListResponse(
        links=[to_link_response(link) for link in result.items],
        pagination=PaginationResponse(**result.pagination),
        statistics=result.statistics,
    )
