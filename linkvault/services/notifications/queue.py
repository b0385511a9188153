from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Mapping

from arq import create_pool
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from linkvault.core.config import get_settings
from linkvault.services.notifications.outbox import due_notification_jobs


logger = logging.getLogger(__name__)

DELIVER_FUNCTION = "deliver_notification"

_queue_pool = None
_queue_pool_loop = None
_queue_lock = asyncio.Lock()


async def get_notification_queue_pool():
    # Cache the ARQ Redis pool per event loop to avoid reconnect churn.
    global _queue_pool, _queue_pool_loop
    current_loop = asyncio.get_running_loop()
    if _queue_pool is not None and _queue_pool_loop == current_loop:
        return _queue_pool
    if _queue_pool is not None and _queue_pool_loop != current_loop:
        _queue_pool = None
    async with _queue_lock:
        if _queue_pool is None:
            settings = get_settings()
            _queue_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.notify_queue_name,
            )
            _queue_pool_loop = current_loop
    return _queue_pool


def queue_job_id(job_id: str, attempt: int = 0) -> str:
    # One ARQ job per delivery attempt; ARQ refuses a second enqueue of the same id.
    return f"notify:{job_id}:{attempt}"


async def dispatch_notification_jobs(
    job_ids: Iterable[str],
    *,
    attempts: Mapping[str, int] | None = None,
) -> int:
    """Push committed outbox ids to the worker queue. Returns how many were queued.

    Failures are logged and swallowed; the worker's due-job scheduler picks up
    anything that was not pushed.
    """
    ids = [job_id for job_id in job_ids if job_id]
    settings = get_settings()
    if not ids or not settings.notify_queue_enabled:
        return 0
    queued = 0
    try:
        redis = await get_notification_queue_pool()
        for job_id in ids:
            job = await redis.enqueue_job(
                DELIVER_FUNCTION,
                job_id,
                _job_id=queue_job_id(job_id, (attempts or {}).get(job_id, 0)),
                _queue_name=settings.notify_queue_name,
            )
            if job is not None:
                queued += 1
    except Exception:  # noqa: BLE001 - enqueue is best-effort; the outbox row is the source of truth.
        logger.warning("notification_dispatch_failed job_ids=%s", ids, exc_info=True)
    return queued


async def enqueue_due_notification_jobs(session: AsyncSession, *, limit: int) -> int:
    # Scheduler path: re-push queued jobs whose backoff elapsed or whose first push was lost.
    due = await due_notification_jobs(session, limit=limit)
    if not due:
        return 0
    attempts = dict(due)
    queued = await dispatch_notification_jobs([job_id for job_id, _ in due], attempts=attempts)
    logger.info("notification_due_jobs_enqueued due=%s queued=%s", len(due), queued)
    return queued
