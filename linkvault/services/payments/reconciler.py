"""Turn completed gateway payments into ledger entries and issued links.

Ledger insert, link issuance and the idempotency record are written in one
transaction. A redelivered event either finds the idempotency record up front or
loses the unique-key race at commit; in both cases nothing is issued twice.
"""

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
from linkvault.core.errors import DuplicateEventError, IssuanceError, MissingFieldError
from linkvault.domain.models import Partner, PartnerTransaction
from linkvault.domain.ownership import LinkOwner, PartnerOwned, StarterFlow
from linkvault.services.idempotency import SCOPE_PAYMENT, add_record, ensure_unprocessed
from linkvault.services.links.issuer import issue_batch
from linkvault.services.notifications.outbox import (
    EVENT_CUSTOMER_LINKS,
    EVENT_LINKS_PURCHASED,
    enqueue_notification,
)
from linkvault.services.notifications.queue import dispatch_notification_jobs


logger = logging.getLogger(__name__)

FLOW_PARTNER = "partner"
FLOW_STARTER = "starter"

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class PaymentEvent:
    # Gateway-neutral view of a completed payment.
    transaction_id: str
    owner_id: str | None
    quantity: int
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    plan_name: str = "QR Code Package"
    gateway_session_id: str | None = None
    payment_intent_id: str | None = None
    customer_email: str | None = None
    flow: str = FLOW_PARTNER


@dataclass(frozen=True)
class ReconcileResult:
    transaction_id: str
    issued: int
    already_processed: bool = False
    link_tokens: list[str] = field(default_factory=list)

    def as_record(self) -> dict[str, Any]:
        return {"transaction_id": self.transaction_id, "issued": self.issued, "link_tokens": self.link_tokens}


def _replay(transaction_id: str, prior: dict[str, Any]) -> ReconcileResult:
    return ReconcileResult(
        transaction_id=transaction_id,
        issued=0,
        already_processed=True,
        link_tokens=list(prior.get("link_tokens") or []),
    )


def _resolve_owner(event: PaymentEvent) -> LinkOwner:
    if event.flow == FLOW_STARTER:
        return StarterFlow()
    if not event.owner_id:
        raise MissingFieldError("owner_id is required for partner purchases")
    return PartnerOwned(owner_id=event.owner_id)


def _validate(event: PaymentEvent) -> None:
    if not (event.transaction_id or "").strip():
        raise MissingFieldError("transaction_id is required")
    if event.quantity < 1:
        raise MissingFieldError("quantity must be positive")
    if event.flow not in (FLOW_PARTNER, FLOW_STARTER):
        raise MissingFieldError(f"unknown payment flow: {event.flow}")


async def _record_purchase(
    session: AsyncSession,
    event: PaymentEvent,
    owner: LinkOwner,
    now: datetime,
) -> None:
    existing = (
        await session.execute(
            select(PartnerTransaction.id).where(PartnerTransaction.transaction_id == event.transaction_id)
        )
    ).scalar_one_or_none()
    if existing is not None:
        return
    amount = Decimal(event.amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    unit_price = (amount / event.quantity).quantize(_CENT, rounding=ROUND_HALF_UP)
    session.add(
        PartnerTransaction(
            transaction_id=event.transaction_id,
            owner_id=owner.storage_id,
            transaction_type="purchase",
            customer_email=event.customer_email,
            plan_name=event.plan_name,
            unit_price=unit_price,
            quantity=event.quantity,
            total_amount=amount,
            currency=(event.currency or "USD").upper(),
            payment_method="stripe",
            status="completed",
            transaction_date=now,
            created_at=now,
            metadata_json={
                "gateway_session_id": event.gateway_session_id,
                "payment_intent_id": event.payment_intent_id,
                "notes": f"{event.flow} purchase: {event.plan_name} - {event.quantity} links",
            },
        )
    )
    await session.flush()


async def reconcile(
    session: AsyncSession,
    event: PaymentEvent,
    *,
    now: datetime | None = None,
) -> ReconcileResult:
    """Process one completed payment exactly once per transaction id."""
    _validate(event)
    owner = _resolve_owner(event)
    settings = get_settings()
    current = now or utc_now()
    try:
        await ensure_unprocessed(session, event.transaction_id)
    except DuplicateEventError as exc:
        logger.info("payment_already_processed transaction_id=%s", event.transaction_id)
        return _replay(event.transaction_id, exc.args[0] if exc.args else {})

    expiry: timedelta | None = None
    batch_no = "partner-purchase"
    if isinstance(owner, StarterFlow):
        expiry = timedelta(hours=settings.starter_link_expiry_hours)
        batch_no = "mainwebsite"

    try:
        await _record_purchase(session, event, owner, current)
        links = await issue_batch(
            session,
            owner,
            event.quantity,
            expiry=expiry,
            session_id_prefix="starter" if isinstance(owner, StarterFlow) else "chat",
            batch_no=batch_no,
            metadata={
                "transaction_id": event.transaction_id,
                "plan": event.plan_name,
                "customer_email": event.customer_email,
            },
            commit=False,
        )
        tokens = [link.token for link in links]
        job_ids: list[str] = []
        if isinstance(owner, PartnerOwned):
            await session.execute(
                update(Partner)
                .where(Partner.id == owner.owner_id)
                .values(secure_links_generated=Partner.secure_links_generated + event.quantity)
                .execution_options(synchronize_session=False)
            )
            job = enqueue_notification(
                session,
                event_type=EVENT_LINKS_PURCHASED,
                owner_id=owner.owner_id,
                payload={
                    "transaction_id": event.transaction_id,
                    "quantity": event.quantity,
                    "plan": event.plan_name,
                },
            )
            job_ids.append(job.id)
        elif event.customer_email:
            job = enqueue_notification(
                session,
                event_type=EVENT_CUSTOMER_LINKS,
                owner_id=owner.storage_id,
                recipient_email=event.customer_email,
                payload={
                    "tokens": tokens,
                    "plan": event.plan_name,
                    "expires_at": links[0].expires_at.isoformat() if links[0].expires_at else None,
                },
            )
            job_ids.append(job.id)
        result = ReconcileResult(transaction_id=event.transaction_id, issued=len(tokens), link_tokens=tokens)
        add_record(
            session,
            transaction_id=event.transaction_id,
            scope=SCOPE_PAYMENT,
            result=result.as_record(),
            now=current,
        )
        await session.commit()
    except (IntegrityError, IssuanceError) as exc:
        await session.rollback()
        try:
            await ensure_unprocessed(session, event.transaction_id)
        except DuplicateEventError as duplicate:
            # A concurrent delivery of the same event committed first.
            logger.info("payment_duplicate_delivery transaction_id=%s", event.transaction_id)
            return _replay(event.transaction_id, duplicate.args[0] if duplicate.args else {})
        if isinstance(exc, IssuanceError):
            raise
        raise IssuanceError("failed to reconcile payment") from exc

    logger.info(
        "payment_reconciled transaction_id=%s owner_id=%s issued=%s",
        event.transaction_id,
        owner.storage_id,
        result.issued,
    )
    await dispatch_notification_jobs(job_ids)
    return result
