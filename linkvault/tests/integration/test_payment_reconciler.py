from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from linkvault.core.clock import ensure_utc
from linkvault.core.config import STARTER_OWNER_ID, get_settings
from linkvault.core.errors import MissingFieldError
from linkvault.domain.models import IdempotencyRecord, PartnerTransaction, SecureLink
from linkvault.services.notifications.outbox import EVENT_CUSTOMER_LINKS, EVENT_LINKS_PURCHASED
from linkvault.services.payments import reconciler
from linkvault.services.payments.reconciler import FLOW_STARTER, PaymentEvent, reconcile
from linkvault.tests.utils.factories import count_rows, create_partner, notification_jobs, utc_now


def _purchase(partner_id: str, transaction_id: str = "TXN-1001", quantity: int = 10) -> PaymentEvent:
    return PaymentEvent(
        transaction_id=transaction_id,
        owner_id=partner_id,
        quantity=quantity,
        amount=Decimal("120.00"),
        plan_name="Growth Pack",
        gateway_session_id="cs_test_1001",
    )


@pytest.mark.asyncio
async def test_partner_purchase_issues_links_and_records_ledger(session) -> None:
    partner = await create_partner(session)
    signup_links = get_settings().signup_link_allotment

    result = await reconcile(session, _purchase(partner.id))

    assert result.issued == 10
    assert result.already_processed is False
    assert len(result.link_tokens) == 10
    purchased = (
        await session.execute(select(SecureLink).where(SecureLink.batch_no == "partner-purchase"))
    ).scalars().all()
    assert {link.token for link in purchased} == set(result.link_tokens)
    assert all(link.owner_id == partner.id and link.expires_at is None for link in purchased)
    assert await count_rows(session, SecureLink, SecureLink.owner_id == partner.id) == signup_links + 10

    ledger = (
        await session.execute(select(PartnerTransaction).where(PartnerTransaction.transaction_id == "TXN-1001"))
    ).scalar_one()
    assert ledger.transaction_type == "purchase"
    assert ledger.quantity == 10
    assert ledger.total_amount == Decimal("120.00")
    assert ledger.unit_price == Decimal("12.00")
    assert ledger.metadata_json["gateway_session_id"] == "cs_test_1001"

    await session.refresh(partner)
    assert partner.secure_links_generated == signup_links + 10
    assert await count_rows(session, IdempotencyRecord, IdempotencyRecord.transaction_id == "TXN-1001") == 1
    jobs = await notification_jobs(session, EVENT_LINKS_PURCHASED)
    assert len(jobs) == 1
    assert jobs[0].payload_json["quantity"] == 10


@pytest.mark.asyncio
async def test_redelivered_payment_is_not_issued_twice(session) -> None:
    partner = await create_partner(session)
    first = await reconcile(session, _purchase(partner.id, quantity=3))

    replay = await reconcile(session, _purchase(partner.id, quantity=3))

    assert replay.already_processed is True
    assert replay.issued == 0
    assert replay.link_tokens == first.link_tokens
    assert await count_rows(session, SecureLink, SecureLink.batch_no == "partner-purchase") == 3
    assert await count_rows(session, PartnerTransaction) == 1
    assert len(await notification_jobs(session, EVENT_LINKS_PURCHASED)) == 1


@pytest.mark.asyncio
async def test_concurrent_delivery_loses_on_unique_record(session, monkeypatch) -> None:
    partner = await create_partner(session)
    first = await reconcile(session, _purchase(partner.id, quantity=2))

    real_check = reconciler.ensure_unprocessed
    calls = {"count": 0}

    async def miss_first_check(db, transaction_id):
        # Simulates a second worker that passed the up-front check before the first committed.
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        await real_check(db, transaction_id)

    monkeypatch.setattr(reconciler, "ensure_unprocessed", miss_first_check)

    replay = await reconcile(session, _purchase(partner.id, quantity=2))

    assert calls["count"] == 2
    assert replay.already_processed is True
    assert replay.link_tokens == first.link_tokens
    assert await count_rows(session, SecureLink, SecureLink.batch_no == "partner-purchase") == 2
    await session.refresh(partner)
    assert partner.secure_links_generated == get_settings().signup_link_allotment + 2


@pytest.mark.asyncio
async def test_starter_purchase_issues_expiring_platform_links(session) -> None:
    before = utc_now()
    event = PaymentEvent(
        transaction_id="TXN-starter-1",
        owner_id=None,
        quantity=2,
        amount=Decimal("19.99"),
        customer_email="visitor@example.com",
        flow=FLOW_STARTER,
    )

    result = await reconcile(session, event)

    links = (
        await session.execute(select(SecureLink).where(SecureLink.token.in_(result.link_tokens)))
    ).scalars().all()
    assert len(links) == 2
    hours = get_settings().starter_link_expiry_hours
    for link in links:
        assert link.owner_id == STARTER_OWNER_ID
        assert link.batch_no == "mainwebsite"
        assert ensure_utc(link.expires_at) >= before + timedelta(hours=hours)
    jobs = await notification_jobs(session, EVENT_CUSTOMER_LINKS)
    assert len(jobs) == 1
    assert jobs[0].recipient_email == "visitor@example.com"
    assert jobs[0].payload_json["tokens"] == result.link_tokens


@pytest.mark.asyncio
async def test_partner_purchase_requires_owner(session) -> None:
    event = PaymentEvent(transaction_id="TXN-x", owner_id=None, quantity=1)

    with pytest.raises(MissingFieldError):
        await reconcile(session, event)
    assert await count_rows(session, SecureLink) == 0
    assert await count_rows(session, IdempotencyRecord) == 0


@pytest.mark.asyncio
async def test_paid_purchase_above_admin_batch_cap_is_fulfilled(session, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "max_batch_size", 5)
    partner = await create_partner(session)

    result = await reconcile(session, _purchase(partner.id, transaction_id="TXN-big", quantity=12))

    assert result.issued == 12
    assert len(set(result.link_tokens)) == 12
    assert await count_rows(session, SecureLink, SecureLink.batch_no == "partner-purchase") == 12
    assert await count_rows(session, IdempotencyRecord, IdempotencyRecord.transaction_id == "TXN-big") == 1
