from linkvault.services.notifications.delivery import deliver_notification_job, render_message
from linkvault.services.notifications.outbox import (
    EVENT_CUSTOMER_LINKS,
    EVENT_LINK_SOLD,
    EVENT_LINK_USED,
    EVENT_LINKS_PURCHASED,
    due_notification_job_ids,
    enqueue_notification,
)
from linkvault.services.notifications.queue import dispatch_notification_jobs

__all__ = [
    "EVENT_CUSTOMER_LINKS",
    "EVENT_LINK_SOLD",
    "EVENT_LINK_USED",
    "EVENT_LINKS_PURCHASED",
    "deliver_notification_job",
    "dispatch_notification_jobs",
    "due_notification_job_ids",
    "enqueue_notification",
    "render_message",
]
