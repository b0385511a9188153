from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.apps.api.deps import get_db
from linkvault.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from linkvault.apps.api.response import ApiModel
from linkvault.services.branding import Branding, get_branding


router = APIRouter(prefix="/brands", tags=["brands"], responses=DEFAULT_ERROR_RESPONSES)


class BrandResponse(ApiModel):
    owner_id: str
    brand_name: str
    logo_url: str | None = None
    primary_color: str
    secondary_color: str
    website_url: str | None = None


def to_brand_response(owner_id: str, branding: Branding) -> BrandResponse:
    return BrandResponse(owner_id=owner_id, **branding.as_dict())


@router.get("/{owner_id}", response_model=BrandResponse)
async def public_branding(owner_id: str, db: AsyncSession = Depends(get_db)) -> BrandResponse:
    # Public lookup used by the chat page to theme itself.
    branding = await get_branding(db, owner_id)
    if branding is None:
        raise HTTPException(status_code=404, detail={"code": "BRAND_NOT_FOUND", "message": "Brand not found"})
    return to_brand_response(owner_id, branding)
