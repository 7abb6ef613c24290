"""Default maintenance job table."""

from datetime import timedelta
from functools import partial

from bananatalk.config import Settings
from bananatalk.media.storage import ObjectStorage
from bananatalk.scheduler import Job, daily, every, weekly
from bananatalk.tasks.cleanup_tasks import (
    cleanup_notifications,
    cleanup_push_tokens,
    sweep_orphaned_blobs,
)
from bananatalk.tasks.notification_tasks import (
    send_inactivity_emails,
    send_reengagement_notifications,
    send_subscription_reminders,
)
from bananatalk.tasks.story_tasks import archive_expired_stories
from bananatalk.tasks.subscription_tasks import reconcile_vip_expiry
from bananatalk.tasks.utils import SessionFactory
from bananatalk.utils.clock import Clock

MONDAY = 0
SUNDAY = 6


def build_default_jobs(
    settings: Settings,
    session_factory: SessionFactory,
    clock: Clock,
    storage: ObjectStorage,
) -> list[Job]:
    """Build the maintenance jobs with their triggers and bound dependencies."""
    tz = settings.scheduler_timezone
    timeout = settings.job_timeout_seconds
    fan_out = {
        "limit": settings.job_batch_limit,
        "max_concurrency": settings.job_max_concurrency,
    }

    return [
        Job(
            name="story-archive",
            schedule=every(timedelta(hours=1)),
            action=partial(archive_expired_stories, session_factory, clock),
            timeout=timeout,
        ),
        Job(
            name="push-token-cleanup",
            schedule=daily(2, 0, tz),
            action=partial(
                cleanup_push_tokens,
                session_factory,
                clock,
                retention_days=settings.push_token_retention_days,
            ),
            timeout=timeout,
        ),
        Job(
            name="reengagement",
            schedule=weekly(MONDAY, 10, 0, tz),
            action=partial(
                send_reengagement_notifications,
                session_factory,
                clock,
                inactive_days=settings.reengagement_inactive_days,
                **fan_out,
            ),
            timeout=timeout,
        ),
        Job(
            name="subscription-reminder",
            schedule=daily(9, 0, tz),
            action=partial(
                send_subscription_reminders,
                session_factory,
                clock,
                days_ahead=settings.subscription_reminder_days,
                **fan_out,
            ),
            timeout=timeout,
        ),
        Job(
            name="notification-gc",
            schedule=weekly(SUNDAY, 3, 0, tz),
            action=partial(
                cleanup_notifications,
                session_factory,
                clock,
                retention_days=settings.notification_retention_days,
            ),
            timeout=timeout,
        ),
        Job(
            name="inactivity-email",
            schedule=daily(9, 0, tz),
            action=partial(
                send_inactivity_emails,
                session_factory,
                clock,
                threshold_days=settings.inactivity_threshold_days,
                **fan_out,
            ),
            timeout=timeout,
        ),
        Job(
            name="vip-expiry-reconcile",
            schedule=every(timedelta(hours=1)),
            action=partial(
                reconcile_vip_expiry,
                session_factory,
                clock,
                grace_period_hours=settings.vip_grace_period_hours,
            ),
            timeout=timeout,
        ),
        Job(
            name="orphan-blob-sweep",
            schedule=every(timedelta(hours=6)),
            action=partial(
                sweep_orphaned_blobs,
                session_factory,
                storage,
                limit=settings.job_batch_limit,
            ),
            timeout=timeout,
        ),
    ]
