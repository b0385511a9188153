from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from linkvault.domain.models import NotificationJob
from linkvault.services.notifications.outbox import EVENT_CUSTOMER_LINKS
from linkvault.tests.utils.api import assert_error, signup
from linkvault.tests.utils.factories import count_rows, utc_now


def _sale_body(owner_id: str, **overrides):
    body = {
        "checkoutSessionId": "cs_api_sale",
        "ownerId": owner_id,
        "customerEmail": "buyer@example.com",
        "plan": "Basic",
        "price": "40.00",
        "quantity": 2,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_sale_returns_links_and_replays(client, session) -> None:
    partner_id, _headers, _email = await signup(client)
    before = utc_now()

    first = await client.post("/v1/sales", json=_sale_body(partner_id))
    replay = await client.post("/v1/sales", json=_sale_body(partner_id))

    assert first.status_code == 200
    payload = first.json()
    assert payload["success"] is True
    assert payload["alreadyProcessed"] is False
    assert payload["transactionId"] == "TXN-cs_api_sale"
    assert len(payload["links"]) == 2
    expires_at = datetime.fromisoformat(payload["expiresAt"].replace("Z", "+00:00"))
    assert expires_at >= before + timedelta(hours=24)
    assert replay.json()["alreadyProcessed"] is True
    assert replay.json()["links"] == payload["links"]
    assert await count_rows(session, NotificationJob, NotificationJob.event_type == EVENT_CUSTOMER_LINKS) == 1


@pytest.mark.asyncio
async def test_sale_failures(client) -> None:
    partner_id, _headers, _email = await signup(client)

    assert_error(
        await client.post("/v1/sales", json=_sale_body(partner_id, checkoutSessionId="cs_big", quantity=50)),
        409,
        "INSUFFICIENT_INVENTORY",
    )
    assert_error(
        await client.post("/v1/sales", json=_sale_body(partner_id, checkoutSessionId="cs_free", price="0")),
        400,
        "MISSING_FIELD",
    )
    assert_error(
        await client.post("/v1/sales", json=_sale_body(partner_id, quantity=0)),
        422,
        "REQUEST_VALIDATION_ERROR",
    )
    assert_error(
        await client.post("/v1/sales", json=_sale_body(partner_id, customerEmail="")),
        400,
        "MISSING_FIELD",
    )
