from __future__ import annotations

from dataclasses import asdict, dataclass
import re
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import STARTER_OWNER_ID
from linkvault.core.errors import MissingFieldError
from linkvault.domain.models import BrandSettings


DEFAULT_PRIMARY_COLOR = "#3B82F6"
DEFAULT_SECONDARY_COLOR = "#10B981"
PLATFORM_BRAND_NAME = "VidalSigns Secure Chat"

_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


@dataclass(frozen=True)
class Branding:
    brand_name: str
    logo_url: str | None
    primary_color: str
    secondary_color: str
    website_url: str | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


PLATFORM_BRANDING = Branding(
    brand_name=PLATFORM_BRAND_NAME,
    logo_url=None,
    primary_color=DEFAULT_PRIMARY_COLOR,
    secondary_color=DEFAULT_SECONDARY_COLOR,
    website_url=None,
)


def partner_site_path(brand_name: str) -> str:
    # Lowercase, drop anything but letters/digits/spaces, hyphenate, cap at 50 chars.
    if not brand_name:
        return ""
    slug = re.sub(r"[^a-z0-9\s]", "", brand_name.lower())
    slug = re.sub(r"\s+", "-", slug)[:50]
    return f"/partnerswebsite/{slug}"


def _validate_color(value: str, field: str) -> str:
    if not _COLOR_RE.match(value):
        raise MissingFieldError(f"{field} must be a hex color like #RRGGBB")
    return value


def _to_branding(row: BrandSettings) -> Branding:
    return Branding(
        brand_name=row.brand_name,
        logo_url=row.logo_url,
        primary_color=row.primary_color,
        secondary_color=row.secondary_color,
        website_url=row.website_url,
    )


async def get_branding(session: AsyncSession, owner_id: str) -> Branding | None:
    if owner_id == STARTER_OWNER_ID:
        return PLATFORM_BRANDING
    row = (
        await session.execute(select(BrandSettings).where(BrandSettings.owner_id == owner_id))
    ).scalar_one_or_none()
    if row is None:
        return None
    return _to_branding(row)


async def upsert_branding(
    session: AsyncSession,
    owner_id: str,
    *,
    brand_name: str,
    logo_url: str | None = None,
    primary_color: str | None = None,
    secondary_color: str | None = None,
    is_deployed: bool | None = None,
    commit: bool = True,
) -> Branding:
    """Create or update the brand settings of a partner."""
    cleaned_name = (brand_name or "").strip()
    if not cleaned_name:
        raise MissingFieldError("brand_name is required")
    row = (
        await session.execute(select(BrandSettings).where(BrandSettings.owner_id == owner_id))
    ).scalar_one_or_none()
    now = utc_now()
    if row is None:
        row = BrandSettings(
            id=uuid4().hex,
            owner_id=owner_id,
            brand_name=cleaned_name,
            primary_color=DEFAULT_PRIMARY_COLOR,
            secondary_color=DEFAULT_SECONDARY_COLOR,
            is_deployed=False,
            created_at=now,
        )
        session.add(row)
    row.brand_name = cleaned_name
    row.website_url = partner_site_path(cleaned_name)
    if logo_url is not None:
        row.logo_url = logo_url.strip() or None
    if primary_color is not None:
        row.primary_color = _validate_color(primary_color, "primary_color")
    if secondary_color is not None:
        row.secondary_color = _validate_color(secondary_color, "secondary_color")
    if is_deployed is not None:
        if is_deployed and not row.is_deployed:
            row.last_deployed_at = now
        row.is_deployed = is_deployed
    if commit:
        await session.commit()
    else:
        await session.flush()
    return _to_branding(row)
