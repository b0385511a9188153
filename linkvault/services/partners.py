from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.core.errors import AuthError, MissingFieldError, PartnerExistsError
from linkvault.domain.models import Partner
from linkvault.domain.ownership import PartnerOwned
from linkvault.services.auth.partner_sessions import hash_password, verify_password
from linkvault.services.branding import upsert_branding
from linkvault.services.crypto.field_cipher import (
    FieldKeys,
    decrypt_or_raw,
    encrypt_field,
    keys_from_settings,
)
from linkvault.services.links.issuer import issue_batch


logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("first_name", "last_name", "email", "password", "state", "organization_name")
_OPTIONAL_PII = ("website_link", "phone", "business_address", "city", "zip_code")


@dataclass(frozen=True)
class PartnerRegistration:
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


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _encrypt_optional(value: str | None, keys: FieldKeys) -> str | None:
    cleaned = (value or "").strip()
    return encrypt_field(cleaned, keys) if cleaned else None


async def find_partner_by_email(
    session: AsyncSession,
    email: str,
    keys: FieldKeys | None = None,
) -> Partner | None:
    # Deterministic ciphertext lets the lookup run as a plain equality match.
    normalized = normalize_email(email)
    if not normalized:
        return None
    ciphertext = encrypt_field(normalized, keys or keys_from_settings())
    result = await session.execute(select(Partner).where(Partner.email == ciphertext))
    return result.scalar_one_or_none()


async def register_partner(session: AsyncSession, payload: PartnerRegistration) -> Partner:
    """Create a partner with encrypted PII, default branding and the signup link allotment."""
    missing = [name for name in _REQUIRED_FIELDS if not (getattr(payload, name) or "").strip()]
    if missing:
        raise MissingFieldError(f"missing required fields: {', '.join(missing)}")
    settings = get_settings()
    keys = keys_from_settings()
    if await find_partner_by_email(session, payload.email, keys) is not None:
        raise PartnerExistsError("a partner with this email already exists")

    now = utc_now()
    allotment = max(0, int(settings.signup_link_allotment))
    partner = Partner(
        id=uuid4().hex,
        email=encrypt_field(normalize_email(payload.email), keys),
        first_name=encrypt_field(payload.first_name.strip(), keys),
        last_name=encrypt_field(payload.last_name.strip(), keys),
        state=encrypt_field(payload.state.strip(), keys),
        organization_name=encrypt_field(payload.organization_name.strip(), keys),
        password_hash=hash_password(payload.password),
        secure_links_generated=allotment,
        total_revenue=Decimal("0"),
        created_at=now,
        updated_at=now,
    )
    for name in _OPTIONAL_PII:
        setattr(partner, name, _encrypt_optional(getattr(payload, name), keys))
    session.add(partner)
    try:
        await session.flush()
        await upsert_branding(
            session,
            partner.id,
            brand_name=payload.organization_name,
            commit=False,
        )
        if allotment:
            await issue_batch(
                session,
                PartnerOwned(owner_id=partner.id),
                allotment,
                batch_no="signup",
                metadata={"source": "signup"},
                commit=False,
            )
        await session.commit()
    except IntegrityError as exc:
        # Lost a concurrent signup race on the unique email column.
        await session.rollback()
        raise PartnerExistsError("a partner with this email already exists") from exc
    logger.info("partner_registered partner_id=%s links=%s", partner.id, partner.secure_links_generated)
    return partner


async def authenticate_partner(session: AsyncSession, email: str, password: str) -> Partner:
    partner = await find_partner_by_email(session, email)
    if partner is None or not verify_password(password or "", partner.password_hash):
        raise AuthError("invalid email or password")
    return partner


def partner_profile(partner: Partner, keys: FieldKeys | None = None) -> dict[str, Any]:
    # Decrypted view for the owning partner and the back office.
    resolved = keys or keys_from_settings()
    profile: dict[str, Any] = {"id": partner.id}
    for name in ("email", "first_name", "last_name", "state", "organization_name", *_OPTIONAL_PII):
        profile[name] = decrypt_or_raw(getattr(partner, name), resolved)
    profile["secure_links_generated"] = int(partner.secure_links_generated or 0)
    profile["total_revenue"] = partner.total_revenue
    profile["created_at"] = partner.created_at
    return profile
