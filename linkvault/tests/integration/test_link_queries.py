from __future__ import annotations

from decimal import Decimal

import pytest

from linkvault.core.errors import MissingFieldError
from linkvault.domain.ownership import PartnerOwned, StarterFlow
from linkvault.persistence.repos.links import count_links, link_statistics, list_links
from linkvault.persistence.repos.transactions import list_transactions, revenue_by_type
from linkvault.services.admin_metrics import list_partners_with_counts, platform_metrics
from linkvault.services.links.issuer import issue_batch
from linkvault.services.links.usage import mark_sold, mark_used
from linkvault.services.payments.reconciler import PaymentEvent, reconcile
from linkvault.services.sales import sell_links
from linkvault.tests.utils.factories import create_partner


async def _owner_with_mixed_links(session, owner_id: str = "p-list"):
    links = await issue_batch(session, PartnerOwned(owner_id=owner_id), 12)
    await mark_used(session, links[0].token)
    await mark_used(session, links[1].token)
    await mark_sold(session, links[1].token)
    await mark_sold(session, links[2].token)
    return links


@pytest.mark.asyncio
async def test_statistics_count_used_and_sold_independently(session) -> None:
    await _owner_with_mixed_links(session)
    await issue_batch(session, PartnerOwned(owner_id="p-other"), 4)

    stats = await link_statistics(session, "p-list")

    assert stats == {"total": 12, "used": 2, "unused": 10, "sold": 2, "unsold": 10}
    assert (await link_statistics(session))["total"] == 16


@pytest.mark.asyncio
async def test_count_links_for_fresh_batch(session) -> None:
    await issue_batch(session, PartnerOwned(owner_id="P-1"), 100)
    await issue_batch(session, PartnerOwned(owner_id="P-2"), 3)

    assert await count_links(session, "P-1", is_used=False) == 100
    assert await count_links(session, "P-1", is_used=True) == 0
    assert await count_links(session, "P-1") == 100

    await _owner_with_mixed_links(session, owner_id="P-1")

    assert await count_links(session, "P-1", is_used=False) == 110
    assert await count_links(session, "P-1", is_used=True, is_sold=True) == 1
    assert await count_links(session, "P-1", is_sold=False) == 110


@pytest.mark.asyncio
async def test_list_links_paginates_owner_scope(session) -> None:
    await _owner_with_mixed_links(session)
    await issue_batch(session, PartnerOwned(owner_id="p-other"), 4)

    first = await list_links(session, "p-list", page=1, limit=5)
    last = await list_links(session, "p-list", page=3, limit=5)

    assert len(first.items) == 5
    assert first.pagination == {
        "current_page": 1,
        "total_pages": 3,
        "total_items": 12,
        "items_per_page": 5,
        "has_next_page": True,
        "has_prev_page": False,
    }
    assert len(last.items) == 2
    assert last.pagination["has_next_page"] is False
    assert all(link.owner_id == "p-list" for link in first.items + last.items)
    assert first.statistics["total"] == 12


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,expected",
    [("all", 12), ("used", 2), ("sold", 2), ("unused", 9), ("unsold", 9)],
)
async def test_list_links_status_filters(session, status, expected) -> None:
    await _owner_with_mixed_links(session)

    page = await list_links(session, "p-list", status=status, limit=100)

    assert page.pagination["total_items"] == expected


@pytest.mark.asyncio
async def test_list_links_rejects_unknown_status(session) -> None:
    with pytest.raises(MissingFieldError):
        await list_links(session, "p-list", status="expired")


@pytest.mark.asyncio
async def test_ledger_listing_and_revenue(session) -> None:
    partner = await create_partner(session)
    await reconcile(
        session,
        PaymentEvent(transaction_id="TXN-buy", owner_id=partner.id, quantity=3, amount=Decimal("30.00")),
    )
    await sell_links(
        session,
        owner_id=partner.id,
        checkout_session_id="cs_ledger",
        customer_email="buyer@example.com",
        plan_name="Basic",
        price="25.50",
        quantity=1,
    )

    rows, pagination = await list_transactions(session, owner_id=partner.id)
    sales, _ = await list_transactions(session, owner_id=partner.id, transaction_type="sale")

    assert pagination["total_items"] == 2
    assert {row.transaction_type for row in rows} == {"purchase", "sale"}
    assert [row.transaction_id for row in sales] == ["TXN-cs_ledger"]
    assert await revenue_by_type(session, partner.id) == {
        "purchase": Decimal("30.00"),
        "sale": Decimal("25.50"),
    }


@pytest.mark.asyncio
async def test_back_office_views(session) -> None:
    partner = await create_partner(session, email="admin-view@example.com")
    await mark_used(session, (await list_links(session, partner.id)).items[0].token)
    await issue_batch(session, StarterFlow(), 2)

    metrics = await platform_metrics(session)
    partners = await list_partners_with_counts(session)

    assert metrics["partners"] == 1
    assert metrics["links"]["total"] == 7
    assert metrics["links"]["used"] == 1
    assert metrics["notifications"] == {"queued": 1}
    assert metrics["revenue"] == {"purchase": Decimal("0.00"), "sale": Decimal("0.00")}
    assert len(partners) == 1
    assert partners[0]["email"] == "admin-view@example.com"
    assert partners[0]["links"] == {"total": 5, "used": 1, "sold": 0}
