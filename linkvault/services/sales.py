"""Customer purchases fulfilled from a partner's unsold link inventory."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.clock import utc_now
from linkvault.core.config import get_settings
from linkvault.core.errors import DuplicateEventError, InsufficientInventoryError, MissingFieldError
from linkvault.domain.models import Partner, PartnerTransaction, SecureLink
from linkvault.domain.ownership import PartnerOwned, owner_from_storage
from linkvault.services.branding import get_branding
from linkvault.services.idempotency import SCOPE_SALE, add_record, ensure_unprocessed
from linkvault.services.links.usage import mark_sold
from linkvault.services.notifications.outbox import (
    EVENT_CUSTOMER_LINKS,
    EVENT_LINK_SOLD,
    enqueue_notification,
)
from linkvault.services.notifications.queue import dispatch_notification_jobs


logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class SaleResult:
    checkout_session_id: str
    transaction_id: str | None
    link_tokens: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    already_processed: bool = False

    def as_record(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "link_tokens": self.link_tokens,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


def _sale_key(checkout_session_id: str) -> str:
    # Sales and gateway payments share the idempotency table; prefix keeps the keys apart.
    return f"sale:{checkout_session_id}"


def _replay(checkout_session_id: str, prior: dict[str, Any]) -> SaleResult:
    expires_raw = prior.get("expires_at")
    return SaleResult(
        checkout_session_id=checkout_session_id,
        transaction_id=prior.get("transaction_id"),
        link_tokens=list(prior.get("link_tokens") or []),
        expires_at=datetime.fromisoformat(expires_raw) if expires_raw else None,
        already_processed=True,
    )


async def _available_links(session: AsyncSession, owner_id: str, quantity: int) -> list[SecureLink]:
    stmt = (
        select(SecureLink)
        .where(
            SecureLink.owner_id == owner_id,
            SecureLink.is_used.is_(False),
            SecureLink.is_sold.is_(False),
        )
        .order_by(SecureLink.created_at.asc(), SecureLink.id.asc())
        .limit(quantity)
        .with_for_update(skip_locked=True)
    )
    return list((await session.execute(stmt)).scalars().all())


async def sell_links(
    session: AsyncSession,
    *,
    owner_id: str,
    checkout_session_id: str,
    customer_email: str,
    plan_name: str,
    price: Decimal | float | str,
    quantity: int,
    now: datetime | None = None,
) -> SaleResult:
    """Assign ``quantity`` unsold partner links to a paying customer.

    Runs once per checkout session. The sold flips, the sale ledger entry, the
    revenue update and the outbox rows commit together.
    """
    checkout_session_id = (checkout_session_id or "").strip()
    customer_email = (customer_email or "").strip()
    if not checkout_session_id:
        raise MissingFieldError("checkoutSessionId is required")
    if not customer_email:
        raise MissingFieldError("customerEmail is required")
    if not plan_name:
        raise MissingFieldError("plan is required")
    if quantity < 1:
        raise MissingFieldError("quantity must be positive")
    try:
        amount = Decimal(str(price)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except ArithmeticError as exc:
        raise MissingFieldError("price must be a number") from exc
    if amount <= 0:
        raise MissingFieldError("price must be greater than zero")
    owner = owner_from_storage(owner_id)
    if not isinstance(owner, PartnerOwned):
        raise MissingFieldError("sales require a partner owner")

    key = _sale_key(checkout_session_id)
    try:
        await ensure_unprocessed(session, key)
    except DuplicateEventError as exc:
        logger.info("sale_already_processed checkout_session_id=%s", checkout_session_id)
        return _replay(checkout_session_id, exc.args[0] if exc.args else {})

    settings = get_settings()
    current = now or utc_now()
    expires_at = current + timedelta(hours=settings.sale_link_expiry_hours)
    branding = await get_branding(session, owner.owner_id)
    brand_name = branding.brand_name if branding else None

    links = await _available_links(session, owner.owner_id, quantity)
    if len(links) < quantity:
        await session.rollback()
        raise InsufficientInventoryError(
            f"partner has {len(links)} unsold links but {quantity} were requested"
        )

    transaction_id = f"TXN-{checkout_session_id}"
    tokens: list[str] = []
    try:
        for link in links:
            sold = await mark_sold(
                session,
                link.token,
                {
                    "customer_email": customer_email,
                    "brand_name": brand_name,
                    "plan": plan_name,
                    "purchase_quantity": quantity,
                    "checkout_session_id": checkout_session_id,
                },
                now=current,
                expires_at=expires_at,
                notify=False,
                commit=False,
            )
            if not sold:
                raise InsufficientInventoryError("inventory changed while the sale was in progress")
            tokens.append(link.token)

        session.add(
            PartnerTransaction(
                transaction_id=transaction_id,
                owner_id=owner.owner_id,
                transaction_type="sale",
                customer_email=customer_email,
                plan_name=plan_name,
                unit_price=(amount / quantity).quantize(_CENT, rounding=ROUND_HALF_UP),
                quantity=quantity,
                total_amount=amount,
                currency="USD",
                payment_method="stripe",
                status="completed",
                transaction_date=current,
                created_at=current,
                metadata_json={
                    "checkout_session_id": checkout_session_id,
                    "link_tokens": tokens,
                    "notes": f"Customer purchase: {plan_name} - {quantity} links",
                },
            )
        )
        await session.execute(
            update(Partner)
            .where(Partner.id == owner.owner_id)
            .values(total_revenue=Partner.total_revenue + amount)
            .execution_options(synchronize_session=False)
        )
        customer_job = enqueue_notification(
            session,
            event_type=EVENT_CUSTOMER_LINKS,
            owner_id=owner.owner_id,
            recipient_email=customer_email,
            payload={
                "tokens": tokens,
                "plan": plan_name,
                "brand_name": brand_name,
                "expires_at": expires_at.isoformat(),
            },
        )
        partner_job = enqueue_notification(
            session,
            event_type=EVENT_LINK_SOLD,
            owner_id=owner.owner_id,
            payload={
                "customer_email": customer_email,
                "plan": plan_name,
                "quantity": quantity,
                "amount": str(amount),
                "brand_name": brand_name,
            },
        )
        result = SaleResult(
            checkout_session_id=checkout_session_id,
            transaction_id=transaction_id,
            link_tokens=tokens,
            expires_at=expires_at,
        )
        add_record(session, transaction_id=key, scope=SCOPE_SALE, result=result.as_record(), now=current)
        await session.commit()
    except InsufficientInventoryError:
        await session.rollback()
        raise
    except IntegrityError:
        await session.rollback()
        try:
            await ensure_unprocessed(session, key)
        except DuplicateEventError as duplicate:
            logger.info("sale_duplicate_delivery checkout_session_id=%s", checkout_session_id)
            return _replay(checkout_session_id, duplicate.args[0] if duplicate.args else {})
        raise

    logger.info(
        "sale_completed owner_id=%s checkout_session_id=%s quantity=%s amount=%s",
        owner.owner_id,
        checkout_session_id,
        quantity,
        amount,
    )
    await dispatch_notification_jobs([customer_job.id, partner_job.id])
    return result
