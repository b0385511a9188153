from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.config import get_settings
from linkvault.core.errors import AuthError
from linkvault.domain.models import Partner
from linkvault.persistence.db import get_session
from linkvault.services.auth.partner_sessions import decode_session_token


ADMIN_KEY_HEADER = "X-Admin-Key"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class PartnerPrincipal(BaseModel):
    # Authenticated partner bound from the session token, never from the request body.
    partner_id: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str:
    if not header_value:
        raise _auth_error("Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def require_partner(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> PartnerPrincipal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    try:
        partner_id = decode_session_token(token)
    except AuthError as exc:
        raise _auth_error(str(exc)) from exc
    # Tokens outlive deleted partners; check the row still exists.
    if await db.get(Partner, partner_id) is None:
        raise _auth_error("Unknown partner")
    return PartnerPrincipal(partner_id=partner_id)


async def require_admin(request: Request) -> None:
    expected = get_settings().admin_api_key
    provided = request.headers.get(ADMIN_KEY_HEADER)
    if not provided:
        raise _auth_error(f"Missing {ADMIN_KEY_HEADER} header")
    if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise _forbidden_error("Invalid admin key")
