from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import ensure_utc, utc_now
from linkvault.core.errors import LinkExpiredError, LinkNotFoundError, MissingFieldError
from linkvault.domain.models import SecureLink
from linkvault.domain.ownership import owner_from_storage
from linkvault.services.branding import Branding, get_branding


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkValidation:
    session_id: str
    owner_id: str
    expires_at: datetime | None
    branding: Branding | None


async def get_link_by_token(session: AsyncSession, token: str) -> SecureLink | None:
    result = await session.execute(select(SecureLink).where(SecureLink.token == token))
    return result.scalar_one_or_none()


def is_expired(link: SecureLink, now: datetime) -> bool:
    # Only partner-owned links are subject to expiry; starter links are exempt.
    owner = owner_from_storage(link.owner_id)
    if not owner.enforces_expiry:
        return False
    expires_at = ensure_utc(link.expires_at)
    return expires_at is not None and expires_at < now


async def validate_link(
    session: AsyncSession,
    token: str,
    *,
    now: datetime | None = None,
) -> LinkValidation:
    """Resolve a token to its session and owner without changing link state."""
    cleaned = (token or "").strip()
    if not cleaned:
        raise MissingFieldError("token is required")
    link = await get_link_by_token(session, cleaned)
    if link is None:
        raise LinkNotFoundError("Link not found")
    if is_expired(link, now or utc_now()):
        raise LinkExpiredError("Link has expired")

    branding: Branding | None = None
    try:
        branding = await get_branding(session, link.owner_id)
    except SQLAlchemyError:
        logger.warning("branding_lookup_failed owner_id=%s", link.owner_id, exc_info=True)
    return LinkValidation(
        session_id=link.session_ref,
        owner_id=link.owner_id,
        expires_at=ensure_utc(link.expires_at),
        branding=branding,
    )
