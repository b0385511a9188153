from __future__ import annotations

from datetime import timedelta

import pytest

from linkvault.domain.models import SecureLink
from linkvault.domain.ownership import PartnerOwned
from linkvault.services.links.issuer import issue_batch
from linkvault.services.links.usage import mark_used
from linkvault.services.notifications import mailer
from linkvault.services.notifications.outbox import STATUS_DELIVERED, STATUS_QUEUED
from linkvault.tests.utils.factories import count_rows, create_partner, notification_jobs, utc_now
from linkvault.workers.notification_worker import (
    WorkerSettings,
    deliver_notification,
    maintenance,
    sweep_due_notifications,
)


class _RecordingSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def login(self, username, password) -> None:
        return None

    def send_message(self, message) -> None:
        _RecordingSMTP.sent.append(message)


@pytest.mark.asyncio
async def test_sweep_delivers_inline_when_queue_disabled(session, monkeypatch) -> None:
    _RecordingSMTP.sent = []
    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", _RecordingSMTP)
    partner = await create_partner(session, email="sweep@example.com")
    links = await issue_batch(session, PartnerOwned(owner_id=partner.id), 2)
    await mark_used(session, links[0].token)
    await mark_used(session, links[1].token)

    delivered = await sweep_due_notifications()

    assert delivered == 2
    assert [message["To"] for message in _RecordingSMTP.sent] == ["sweep@example.com", "sweep@example.com"]
    for job in await notification_jobs(session):
        await session.refresh(job)
        assert job.status == STATUS_DELIVERED
    assert await sweep_due_notifications() == 0


@pytest.mark.asyncio
async def test_deliver_task_reports_outcome(session, monkeypatch) -> None:
    class _DownSMTP(_RecordingSMTP):
        def send_message(self, message) -> None:
            raise OSError("relay down")

    monkeypatch.setattr(mailer.smtplib, "SMTP_SSL", _DownSMTP)
    partner = await create_partner(session)
    link = (await issue_batch(session, PartnerOwned(owner_id=partner.id), 1))[0]
    await mark_used(session, link.token)
    job = (await notification_jobs(session))[0]

    assert await deliver_notification({}, job.id) == STATUS_QUEUED
    assert await deliver_notification({}, "missing-job") == "skipped"


@pytest.mark.asyncio
async def test_maintenance_cron_purges_expired_links(session) -> None:
    links = await issue_batch(session, PartnerOwned(owner_id="p-cron"), 2, expiry=timedelta(hours=1))
    links[0].expires_at = utc_now() - timedelta(hours=1)
    await session.commit()

    summary = await maintenance({})

    assert summary["links_purged"] == 1
    assert await count_rows(session, SecureLink) == 1


def test_worker_settings_disable_arq_retries() -> None:
    assert WorkerSettings.max_tries == 1
    assert WorkerSettings.functions == [deliver_notification]
    assert WorkerSettings.queue_name == "notifications"
