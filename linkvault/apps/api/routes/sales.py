from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.deps import get_db
from linkvault.apps.api.response import ApiModel
from linkvault.services.sales import sell_links


router = APIRouter(prefix="/sales", tags=["sales"], responses=DEFAULT_ERROR_RESPONSES)


class SaleRequest(ApiModel):
    checkout_session_id: str
    owner_id: str
    customer_email: str
    plan: str
    price: Decimal
    quantity: int = Field(ge=1)


class SaleResponse(ApiModel):
    success: bool
    links: list[str]
    transaction_id: str | None = None
    expires_at: datetime | None = None
    already_processed: bool = False


@router.post("", response_model=SaleResponse)
async def create_sale(payload: SaleRequest, db: AsyncSession = Depends(get_db)) -> SaleResponse:
    # Replays of the same checkout session return the original links.
    result = await sell_links(
        db,
        owner_id=payload.owner_id,
        checkout_session_id=payload.checkout_session_id,
        customer_email=payload.customer_email,
        plan_name=payload.plan,
        price=payload.price,
        quantity=payload.quantity,
    )
    return SaleResponse(
        success=True,
        links=result.link_tokens,
        transaction_id=result.transaction_id,
        expires_at=result.expires_at,
        already_processed=result.already_processed,
    )
