from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import PartnerPrincipal, get_db, require_admin, require_partner
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.response import ApiModel, PaginationResponse
from linkvault.core.clock import ensure_utc
from linkvault.core.config import get_settings
from linkvault.core.errors import LinkValidationError
from linkvault.domain.models import SecureLink
from linkvault.domain.ownership import owner_from_storage
from linkvault.persistence.repos.links import list_links
from linkvault.services.links.issuer import issue_batch
from linkvault.services.links.usage import mark_sold, mark_used
from linkvault.services.links.validator import validate_link


router = APIRouter(prefix="/links", tags=["links"], responses=DEFAULT_ERROR_RESPONSES)


class LinkResponse(ApiModel):
    token: str
    owner_id: str
    session_id: str
    batch_no: str
    is_used: bool
    used_at: datetime | None = None
    is_sold: bool
    sold_at: datetime | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class BatchRequest(ApiModel):
    owner_id: str = Field(min_length=1)
    count: int
    expiry_hours: float | None = Field(default=None, gt=0)


class BatchResponse(ApiModel):
    links: list[LinkResponse]


class TokenRequest(ApiModel):
    token: str


class BrandingResponse(ApiModel):
    brand_name: str
    logo_url: str | None = None
    primary_color: str
    secondary_color: str
    website_url: str | None = None


class ValidateResponse(ApiModel):
    session_id: str
    owner_id: str
    expires_at: datetime | None = None
    branding: BrandingResponse | None = None


class MarkSoldRequest(ApiModel):
    token: str
    customer_email: str | None = None
    plan: str | None = None


class MarkResponse(ApiModel):
    success: bool
    changed: bool


class LinkListResponse(ApiModel):
    links: list[LinkResponse]
    pagination: PaginationResponse
    statistics: dict[str, int]


def to_link_response(link: SecureLink) -> LinkResponse:
    return LinkResponse(
        token=link.token,
        owner_id=link.owner_id,
        session_id=link.session_ref,
        batch_no=link.batch_no,
        is_used=link.is_used,
        used_at=ensure_utc(link.used_at),
        is_sold=link.is_sold,
        sold_at=ensure_utc(link.sold_at),
        expires_at=ensure_utc(link.expires_at),
        metadata=link.metadata_json or {},
        created_at=ensure_utc(link.created_at),
    )


@router.post("/batch", response_model=BatchResponse, dependencies=[Depends(require_admin)])
async def create_batch(payload: BatchRequest, db: AsyncSession = Depends(get_db)) -> BatchResponse:
    # Back-office batches are capped; paid issuance through the reconciler is not.
    max_batch_size = get_settings().max_batch_size
    if payload.count > max_batch_size:
        raise LinkValidationError(f"count must be between 1 and {max_batch_size}")
    expiry = timedelta(hours=payload.expiry_hours) if payload.expiry_hours else None
    links = await issue_batch(
        db,
        owner_from_storage(payload.owner_id.strip()),
        payload.count,
        expiry=expiry,
        batch_no="admin",
    )
    return BatchResponse(links=[to_link_response(link) for link in links])


@router.post("/validate", response_model=ValidateResponse)
async def validate(payload: TokenRequest, db: AsyncSession = Depends(get_db)) -> ValidateResponse:
    result = await validate_link(db, payload.token)
    branding = BrandingResponse(**result.branding.as_dict()) if result.branding else None
    return ValidateResponse(
        session_id=result.session_id,
        owner_id=result.owner_id,
        expires_at=result.expires_at,
        branding=branding,
    )


@router.post("/mark-used", response_model=MarkResponse)
async def mark_link_used(payload: TokenRequest, db: AsyncSession = Depends(get_db)) -> MarkResponse:
    # Repeated calls succeed; only the first flips state and notifies.
    changed = await mark_used(db, payload.token)
    return MarkResponse(success=True, changed=changed)


@router.post("/mark-sold", response_model=MarkResponse)
async def mark_link_sold(payload: MarkSoldRequest, db: AsyncSession = Depends(get_db)) -> MarkResponse:
    sale_metadata = {
        key: value
        for key, value in {"customer_email": payload.customer_email, "plan": payload.plan}.items()
        if value
    }
    changed = await mark_sold(db, payload.token, sale_metadata)
    return MarkResponse(success=True, changed=changed)


@router.get("", response_model=LinkListResponse)
async def list_partner_links(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: str = Query(default="all"),
    principal: PartnerPrincipal = Depends(require_partner),
    db: AsyncSession = Depends(get_db),
) -> LinkListResponse:
    # Owner scope comes from the session token only.
    result = await list_links(db, principal.partner_id, status=status, page=page, limit=limit)
    return LinkListResponse(
        links=[to_link_response(link) for link in result.items],
        pagination=PaginationResponse(**result.pagination),
        statistics=result.statistics,
    )
