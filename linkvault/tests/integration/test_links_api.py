from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from linkvault.domain.models import NotificationJob, SecureLink
from linkvault.domain.ownership import PartnerOwned
from linkvault.services.links.issuer import issue_batch
from linkvault.tests.utils.api import admin_headers, assert_error, signup
from linkvault.tests.utils.factories import count_rows, utc_now


async def _partner_token(session, partner_id: str) -> str:
    return (
        await session.execute(select(SecureLink.token).where(SecureLink.owner_id == partner_id).limit(1))
    ).scalar_one()


@pytest.mark.asyncio
async def test_validate_returns_camel_case_payload_with_branding(client, session) -> None:
    partner_id, _headers, _email = await signup(client, organizationName="Bright Dental")
    token = await _partner_token(session, partner_id)

    response = await client.post("/v1/links/validate", json={"token": token})

    assert response.status_code == 200
    payload = response.json()
    assert payload["ownerId"] == partner_id
    assert payload["sessionId"]
    assert payload["expiresAt"] is None
    assert payload["branding"]["brandName"] == "Bright Dental"
    assert payload["branding"]["websiteUrl"] == "/partnerswebsite/bright-dental"
    assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_validate_error_envelopes(client, session) -> None:
    link = (await issue_batch(session, PartnerOwned(owner_id="p-api-exp"), 1, expiry=timedelta(hours=1)))[0]
    link.expires_at = utc_now() - timedelta(minutes=5)
    await session.commit()

    missing = await client.post("/v1/links/validate", json={"token": "nope"}, headers={"X-Request-Id": "req-123"})
    payload = assert_error(missing, 404, "LINK_NOT_FOUND")
    assert payload["meta"]["request_id"] == "req-123"
    assert missing.headers["X-Request-Id"] == "req-123"

    assert_error(await client.post("/v1/links/validate", json={"token": link.token}), 410, "LINK_EXPIRED")
    assert_error(await client.post("/v1/links/validate", json={"token": "  "}), 400, "MISSING_FIELD")
    invalid = assert_error(await client.post("/v1/links/validate", json={}), 422, "REQUEST_VALIDATION_ERROR")
    assert invalid["error"]["details"]["errors"]


@pytest.mark.asyncio
async def test_mark_used_is_idempotent_over_http(client, session) -> None:
    partner_id, _headers, _email = await signup(client)
    token = await _partner_token(session, partner_id)

    first = await client.post("/v1/links/mark-used", json={"token": token})
    second = await client.post("/v1/links/mark-used", json={"token": token})

    assert first.json() == {"success": True, "changed": True}
    assert second.json() == {"success": True, "changed": False}
    assert await count_rows(session, NotificationJob, NotificationJob.owner_id == partner_id) == 1
    assert_error(await client.post("/v1/links/mark-used", json={"token": "missing"}), 404, "LINK_NOT_FOUND")


@pytest.mark.asyncio
async def test_mark_sold_over_http(client, session) -> None:
    partner_id, _headers, _email = await signup(client)
    token = await _partner_token(session, partner_id)

    response = await client.post(
        "/v1/links/mark-sold",
        json={"token": token, "customerEmail": "c@example.com", "plan": "Basic"},
    )
    again = await client.post("/v1/links/mark-sold", json={"token": token})

    assert response.json() == {"success": True, "changed": True}
    assert again.json() == {"success": True, "changed": False}
    link = (await session.execute(select(SecureLink).where(SecureLink.token == token))).scalar_one()
    await session.refresh(link)
    assert link.is_sold is True
    assert link.metadata_json["plan"] == "Basic"


@pytest.mark.asyncio
async def test_partner_link_listing_is_scoped_to_session(client) -> None:
    _partner_id, headers, _email = await signup(client)
    await signup(client)

    response = await client.get("/v1/links", params={"limit": 2}, headers=headers)

    assert response.status_code == 200
    payload = response.json()
    assert len(payload["links"]) == 2
    assert payload["pagination"]["totalItems"] == 5
    assert payload["pagination"]["totalPages"] == 3
    assert payload["pagination"]["hasNextPage"] is True
    assert payload["statistics"] == {"total": 5, "used": 0, "unused": 5, "sold": 0, "unsold": 5}
    assert {"token", "isUsed", "isSold", "batchNo", "expiresAt"} <= set(payload["links"][0])

    assert_error(await client.get("/v1/links", params={"status": "bogus"}, headers=headers), 400, "MISSING_FIELD")


@pytest.mark.asyncio
async def test_partner_link_listing_requires_session(client) -> None:
    response = await client.get("/v1/links")

    assert_error(response, 401, "AUTH_UNAUTHORIZED")
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert_error(
        await client.get("/v1/links", headers={"Authorization": "Bearer not-a-token"}),
        401,
        "AUTH_UNAUTHORIZED",
    )


@pytest.mark.asyncio
async def test_admin_batch_issuance(client, session) -> None:
    body = {"ownerId": "p-admin-batch", "count": 4, "expiryHours": 2}

    assert_error(await client.post("/v1/links/batch", json=body), 401, "AUTH_UNAUTHORIZED")
    assert_error(
        await client.post("/v1/links/batch", json=body, headers={"X-Admin-Key": "wrong"}),
        403,
        "AUTH_FORBIDDEN",
    )

    response = await client.post("/v1/links/batch", json=body, headers=admin_headers())

    assert response.status_code == 200
    links = response.json()["links"]
    assert len(links) == 4
    assert all(link["ownerId"] == "p-admin-batch" and link["batchNo"] == "admin" for link in links)
    assert all(link["expiresAt"] for link in links)
    assert await count_rows(session, SecureLink, SecureLink.owner_id == "p-admin-batch") == 4

    assert_error(
        await client.post("/v1/links/batch", json={"ownerId": "p-admin-batch", "count": 0}, headers=admin_headers()),
        400,
        "VALIDATION_ERROR",
    )
    assert_error(
        await client.post("/v1/links/batch", json={"ownerId": "p-admin-batch", "count": 1001}, headers=admin_headers()),
        400,
        "VALIDATION_ERROR",
    )
    assert await count_rows(session, SecureLink, SecureLink.owner_id == "p-admin-batch") == 4
