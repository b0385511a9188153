from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import PartnerPrincipal, get_db, require_partner
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.response import ApiModel, PaginationResponse
from linkvault.apps.api.routes.brands import BrandResponse, to_brand_response
from linkvault.core.clock import ensure_utc
from linkvault.core.errors import AuthError
from linkvault.domain.models import Partner, PartnerTransaction
from linkvault.persistence.repos.links import link_statistics
from linkvault.persistence.repos.transactions import list_transactions
from linkvault.services.auth.partner_sessions import issue_session_token
from linkvault.services.branding import upsert_branding
from linkvault.services.partners import (
    PartnerRegistration,
    authenticate_partner,
    partner_profile,
    register_partner,
)


router = APIRouter(prefix="/partners", tags=["partners"], responses=DEFAULT_ERROR_RESPONSES)


class SignupRequest(ApiModel):
    first_name: str
    last_name: str
    email: str
    password: str
    state: str
    organization_name: str
    website_link: str | None = None
    phone: str | None = None
    business_address: str | None = None
    city: str | None = None
    zip_code: str | None = None


class LoginRequest(ApiModel):
    email: str
    password: str


class SessionResponse(ApiModel):
    partner_id: str
    token: str
    token_type: str = "bearer"


class ProfileResponse(ApiModel):
    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    state: str | None = None
    organization_name: str | None = None
    website_link: str | None = None
    phone: str | None = None
    business_address: str | None = None
    city: str | None = None
    zip_code: str | None = None
    secure_links_generated: int = 0
    total_revenue: Decimal = Decimal("0")
    created_at: datetime | None = None
    links: dict[str, int] = Field(default_factory=dict)


class TransactionResponse(ApiModel):
    transaction_id: str
    transaction_type: str
    customer_email: str | None = None
    plan_name: str
    unit_price: Decimal
    quantity: int
    total_amount: Decimal
    currency: str
    payment_method: str
    status: str
    transaction_date: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TransactionListResponse(ApiModel):
    transactions: list[TransactionResponse]
    pagination: PaginationResponse


class BrandingUpdateRequest(ApiModel):
    brand_name: str
    logo_url: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    is_deployed: bool | None = None


def to_transaction_response(row: PartnerTransaction) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=row.transaction_id,
        transaction_type=row.transaction_type,
        customer_email=row.customer_email,
        plan_name=row.plan_name,
        unit_price=row.unit_price,
        quantity=row.quantity,
        total_amount=row.total_amount,
        currency=row.currency,
        payment_method=row.payment_method,
        status=row.status,
        transaction_date=ensure_utc(row.transaction_date),
        metadata=row.metadata_json or {},
    )


def _session_for(partner: Partner) -> SessionResponse:
    return SessionResponse(partner_id=partner.id, token=issue_session_token(partner.id))


@router.post("/signup", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupRequest, db: AsyncSession = Depends(get_db)) -> SessionResponse:
    partner = await register_partner(db, PartnerRegistration(**payload.model_dump()))
    return _session_for(partner)


@router.post("/login", response_model=SessionResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)) -> SessionResponse:
    partner = await authenticate_partner(db, payload.email, payload.password)
    return _session_for(partner)


@router.get("/me", response_model=ProfileResponse)
async def me(
    principal: PartnerPrincipal = Depends(require_partner),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    partner = await db.get(Partner, principal.partner_id)
    if partner is None:
        raise AuthError("Unknown partner")
    profile = partner_profile(partner)
    profile["created_at"] = ensure_utc(profile.get("created_at"))
    return ProfileResponse(**profile, links=await link_statistics(db, partner.id))


@router.get("/me/transactions", response_model=TransactionListResponse)
async def my_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    transaction_type: str | None = Query(default=None, alias="type"),
    principal: PartnerPrincipal = Depends(require_partner),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    rows, pagination = await list_transactions(
        db,
        owner_id=principal.partner_id,
        transaction_type=transaction_type,
        page=page,
        limit=limit,
    )
    return TransactionListResponse(
        transactions=[to_transaction_response(row) for row in rows],
        pagination=PaginationResponse(**pagination),
    )


@router.put("/me/branding", response_model=BrandResponse)
async def update_branding(
    payload: BrandingUpdateRequest,
    principal: PartnerPrincipal = Depends(require_partner),
    db: AsyncSession = Depends(get_db),
) -> BrandResponse:
    branding = await upsert_branding(
        db,
        principal.partner_id,
        brand_name=payload.brand_name,
        logo_url=payload.logo_url,
        primary_color=payload.primary_color,
        secondary_color=payload.secondary_color,
        is_deployed=payload.is_deployed,
    )
    return to_brand_response(principal.partner_id, branding)
