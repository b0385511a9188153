from __future__ import annotations

import asyncio
import logging

from arq import cron
from arq.connections import RedisSettings

from linkvault.core.config import get_settings, validate_required_secrets
from linkvault.core.logging import configure_logging
from linkvault.persistence.db import SessionLocal
from linkvault.services.maintenance import run_maintenance
from linkvault.services.notifications.delivery import deliver_notification_job
from linkvault.services.notifications.outbox import due_notification_job_ids
from linkvault.services.notifications.queue import enqueue_due_notification_jobs

logger = logging.getLogger(__name__)


async def deliver_notification(ctx, job_id: str) -> str:
    # One delivery attempt per queued outbox id; the outcome is recorded on the row.
    async with SessionLocal() as session:
        row = await deliver_notification_job(session, job_id)
    return row.status if row is not None else "skipped"


async def sweep_due_notifications() -> int:
    """Hand due outbox rows to the queue, or deliver them inline when the queue is off."""
    settings = get_settings()
    batch = max(1, int(settings.notify_requeue_batch_size))
    async with SessionLocal() as session:
        if settings.notify_queue_enabled:
            return await enqueue_due_notification_jobs(session, limit=batch)
        job_ids = await due_notification_job_ids(session, limit=batch)
    delivered = 0
    for job_id in job_ids:
        async with SessionLocal() as session:
            row = await deliver_notification_job(session, job_id)
        if row is not None:
            delivered += 1
    return delivered


async def _scheduler_loop() -> None:
    # Re-enqueue due jobs on a bounded cadence to recover from lost pushes and elapsed backoff.
    settings = get_settings()
    interval_s = max(1, int(settings.notify_worker_poll_interval_s))
    while True:
        try:
            await sweep_due_notifications()
        except Exception:  # noqa: BLE001 - keep scheduler alive while surfacing failures in worker logs.
            logger.exception("notification_scheduler_failed")
        await asyncio.sleep(interval_s)


async def maintenance(ctx) -> dict[str, int]:
    # Stands in for a storage-level TTL sweep on expired links and idempotency records.
    async with SessionLocal() as session:
        summary = await run_maintenance(session)
    logger.info("maintenance_completed %s", " ".join(f"{k}={v}" for k, v in summary.items()))
    return summary


async def _startup(ctx) -> None:
    configure_logging()
    validate_required_secrets()
    ctx["scheduler_task"] = asyncio.create_task(_scheduler_loop())


async def _shutdown(ctx) -> None:
    # Cancel scheduler task on shutdown to avoid dangling coroutines in tests and local runs.
    task = ctx.get("scheduler_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_queue_name
    # Retries come from the outbox backoff, not from ARQ.
    max_tries = 1
    functions = [deliver_notification]
    cron_jobs = [cron(maintenance, minute={0}, run_at_startup=False)]
    on_startup = _startup
    on_shutdown = _shutdown
