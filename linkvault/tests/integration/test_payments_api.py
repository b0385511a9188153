from __future__ import annotations

import pytest
import stripe
from sqlalchemy import select

from linkvault.domain.models import Partner, PartnerTransaction, SecureLink
from linkvault.tests.utils.api import assert_error, signup
from linkvault.tests.utils.factories import (
    checkout_completed_event,
    count_rows,
    encode_event,
    stripe_signature,
)


async def _post_event(client, event, *, signature: str | None = None):
    payload = encode_event(event)
    headers = {"Content-Type": "application/json"}
    header = stripe_signature(payload) if signature is None else signature
    if header:
        headers["Stripe-Signature"] = header
    return await client.post("/v1/payments/webhook", content=payload, headers=headers)


@pytest.mark.asyncio
async def test_signed_checkout_webhook_issues_links_once(client, session) -> None:
    partner_id, _headers, _email = await signup(client)
    event = checkout_completed_event(partner_id=partner_id, count=3, amount_total=4500, transaction_id="TXN-web-1")

    first = await _post_event(client, event)
    replay = await _post_event(client, event)

    assert first.status_code == 200
    assert first.json() == {"success": True, "issued": 3, "alreadyProcessed": False, "ignored": False}
    assert replay.json() == {"success": True, "issued": 0, "alreadyProcessed": True, "ignored": False}
    assert await count_rows(session, SecureLink, SecureLink.batch_no == "partner-purchase") == 3
    ledger = (
        await session.execute(select(PartnerTransaction).where(PartnerTransaction.transaction_id == "TXN-web-1"))
    ).scalar_one()
    assert str(ledger.total_amount) in ("45", "45.00")
    partner = await session.get(Partner, partner_id)
    assert partner.secure_links_generated == 8


@pytest.mark.asyncio
async def test_webhook_rejects_unsigned_and_forged_payloads(client, session) -> None:
    event = checkout_completed_event(partner_id="p-forged", count=3, amount_total=100)

    assert_error(await _post_event(client, event, signature=""), 400, "WEBHOOK_SIGNATURE_INVALID")
    forged = stripe_signature(encode_event(event), secret="whsec_attacker")
    assert_error(await _post_event(client, event, signature=forged), 400, "WEBHOOK_SIGNATURE_INVALID")
    assert await count_rows(session, SecureLink) == 0


@pytest.mark.asyncio
async def test_webhook_ignores_other_event_types(client) -> None:
    event = {"id": "evt_other", "object": "event", "type": "customer.created", "data": {"object": {}}}

    response = await _post_event(client, event)

    assert response.json() == {"success": True, "issued": 0, "alreadyProcessed": False, "ignored": True}


@pytest.mark.asyncio
async def test_webhook_with_incomplete_metadata_is_rejected(client, session) -> None:
    event = checkout_completed_event(partner_id=None, count=3, amount_total=100)

    assert_error(await _post_event(client, event), 400, "MISSING_FIELD")
    assert await count_rows(session, PartnerTransaction) == 0


@pytest.mark.asyncio
async def test_checkout_session_for_partner(client, monkeypatch) -> None:
    partner_id, headers, _email = await signup(client)
    created = {}

    def fake_create(**params):
        created.update(params)
        return {"id": "cs_test_api", "url": "https://checkout.stripe.test/cs_test_api"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    response = await client.post("/v1/payments/checkout", json={"package": "starter"}, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_test_api", "url": "https://checkout.stripe.test/cs_test_api"}
    assert created["metadata"]["partnerId"] == partner_id
    assert_error(
        await client.post("/v1/payments/checkout", json={"package": "unknown"}, headers=headers),
        400,
        "MISSING_FIELD",
    )
    assert_error(await client.post("/v1/payments/checkout", json={"package": "starter"}), 401, "AUTH_UNAUTHORIZED")
