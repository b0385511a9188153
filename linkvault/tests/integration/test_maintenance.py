from __future__ import annotations

from datetime import timedelta

import pytest

from linkvault.core.config import get_settings
from linkvault.domain.models import IdempotencyRecord, SecureLink
from linkvault.domain.ownership import PartnerOwned, StarterFlow
from linkvault.services.idempotency import SCOPE_PAYMENT, add_record
from linkvault.services.links.issuer import issue_batch
from linkvault.services.maintenance import purge_expired_links, run_maintenance
from linkvault.tests.utils.factories import count_rows, utc_now


@pytest.mark.asyncio
async def test_purge_removes_only_expired_links(session) -> None:
    owner = PartnerOwned(owner_id="p-purge")
    await issue_batch(session, owner, 3, expiry=timedelta(hours=1))
    await issue_batch(session, owner, 2)
    await issue_batch(session, StarterFlow(), 2, expiry=timedelta(hours=5))

    assert await purge_expired_links(session) == 0

    purged = await purge_expired_links(session, now=utc_now() + timedelta(hours=2))

    assert purged == 3
    assert await count_rows(session, SecureLink, SecureLink.owner_id == "p-purge") == 2
    assert await count_rows(session, SecureLink) == 4


@pytest.mark.asyncio
async def test_purge_walks_batches(session, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "maintenance_batch_size", 2)
    await issue_batch(session, PartnerOwned(owner_id="p-batch"), 5, expiry=timedelta(minutes=1))

    purged = await purge_expired_links(session, now=utc_now() + timedelta(hours=1))

    assert purged == 5
    assert await count_rows(session, SecureLink) == 0


@pytest.mark.asyncio
async def test_run_maintenance_prunes_idempotency_records(session) -> None:
    old = utc_now() - timedelta(days=90)
    add_record(session, transaction_id="TXN-old", scope=SCOPE_PAYMENT, result={}, now=old)
    add_record(session, transaction_id="TXN-new", scope=SCOPE_PAYMENT, result={})
    await session.commit()

    summary = await run_maintenance(session)

    assert summary == {"links_purged": 0, "idempotency_pruned": 1}
    assert await count_rows(session, IdempotencyRecord) == 1
