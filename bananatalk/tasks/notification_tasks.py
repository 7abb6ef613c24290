"""Notification jobs: re-engagement pushes, VIP reminders and inactivity emails.

Jobs only enqueue rows in the notification outbox; delivery belongs to the
push and email transports. Each user is handled in its own transaction so
one failure is counted without undoing the rest of the batch.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from bananatalk.repositories.notification_repository import NotificationRepository
from bananatalk.repositories.user_repository import UserRepository
from bananatalk.tasks.utils import SessionFactory, fan_out, unit_of_work
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

PUSH = "push"
EMAIL = "email"

# Offsets in days past the inactivity threshold, latest stage first
INACTIVITY_STAGES: tuple[tuple[int, str], ...] = (
    (21, "final_warning"),
    (14, "warning"),
    (7, "second_reminder"),
    (0, "first_reminder"),
)
FINAL_STAGE = INACTIVITY_STAGES[0][1]


@dataclass(frozen=True)
class _Recipient:
    user_id: UUID
    last_activity_at: Optional[datetime] = None
    vip_expires_at: Optional[datetime] = None
    stages_sent: tuple[str, ...] = ()

    def __str__(self) -> str:
        return str(self.user_id)


def inactivity_stage(
    days_inactive: int, stages_sent: tuple[str, ...] | list[str], threshold_days: int = 7
) -> Optional[str]:
    """Pick the inactivity email stage due for a user, or None."""
    for offset, stage in INACTIVITY_STAGES:
        if days_inactive >= threshold_days + offset and stage not in stages_sent:
            return stage
    return None


async def send_reengagement_notifications(
    session_factory: SessionFactory,
    clock: Clock,
    inactive_days: int = 7,
    limit: int = 500,
    max_concurrency: int = 10,
) -> dict[str, Any]:
    """Enqueue a re-engagement push for opted-in users inactive for ``inactive_days``."""
    now = clock.now()
    log.info("reengagement_started", inactive_days=inactive_days)

    async with unit_of_work(session_factory) as session:
        users = await UserRepository(session).list_reengagement_candidates(
            now - timedelta(days=inactive_days), limit
        )
        recipients = [_Recipient(user_id=u.id) for u in users]

    async def _notify(recipient: _Recipient) -> bool:
        async with unit_of_work(session_factory) as session:
            await NotificationRepository(session).enqueue(
                recipient.user_id,
                PUSH,
                "reengagement",
                {"category": "system"},
            )
        return True

    outcome = await fan_out("reengagement", recipients, _notify, max_concurrency)
    log.info("reengagement_completed", sent=outcome.done, failed=outcome.failed)
    return {"success": True, "sent": outcome.done, "failed": outcome.failed}


async def send_subscription_reminders(
    session_factory: SessionFactory,
    clock: Clock,
    days_ahead: int = 3,
    limit: int = 500,
    max_concurrency: int = 10,
) -> dict[str, Any]:
    """Remind VIPs whose subscription ends in [now + days_ahead, now + days_ahead + 1d)."""
    now = clock.now()
    start = now + timedelta(days=days_ahead)
    end = start + timedelta(days=1)
    log.info("subscription_reminder_started", window_start=start.isoformat())

    async with unit_of_work(session_factory) as session:
        users = await UserRepository(session).list_vips_expiring_between(start, end, limit)
        recipients = [_Recipient(user_id=u.id, vip_expires_at=u.vip_expires_at) for u in users]

    async def _remind(recipient: _Recipient) -> bool:
        assert recipient.vip_expires_at is not None
        days_left = math.ceil((recipient.vip_expires_at - now).total_seconds() / 86400)
        async with unit_of_work(session_factory) as session:
            await NotificationRepository(session).enqueue(
                recipient.user_id,
                PUSH,
                "subscription_expiring",
                {"daysLeft": days_left, "expiresAt": recipient.vip_expires_at.isoformat()},
            )
        return True

    outcome = await fan_out("subscription-reminder", recipients, _remind, max_concurrency)
    log.info("subscription_reminder_completed", sent=outcome.done, failed=outcome.failed)
    return {"success": True, "sent": outcome.done, "failed": outcome.failed}


async def send_inactivity_emails(
    session_factory: SessionFactory,
    clock: Clock,
    threshold_days: int = 7,
    limit: int = 500,
    max_concurrency: int = 10,
) -> dict[str, Any]:
    """Email users inactive past the threshold, one stage at a time.

    Stages already sent are recorded on the user and cleared once the user
    is active again.
    """
    now = clock.now()
    inactive_before = now - timedelta(days=threshold_days)
    log.info("inactivity_email_started", threshold_days=threshold_days)

    async with unit_of_work(session_factory) as session:
        repo = UserRepository(session)
        reset = await repo.reset_inactivity_stages(inactive_before)
        users = await repo.list_inactive_for_email(inactive_before, limit, FINAL_STAGE)
        recipients = [
            _Recipient(
                user_id=u.id,
                last_activity_at=u.last_activity_at,
                stages_sent=tuple(u.inactivity_emails_sent or ()),
            )
            for u in users
        ]

    async def _email(recipient: _Recipient) -> bool:
        assert recipient.last_activity_at is not None
        days_inactive = (now - recipient.last_activity_at).days
        stage = inactivity_stage(days_inactive, recipient.stages_sent, threshold_days)
        if stage is None:
            return False
        async with unit_of_work(session_factory) as session:
            await NotificationRepository(session).enqueue(
                recipient.user_id,
                EMAIL,
                f"inactivity_{stage}",
                {"daysInactive": days_inactive, "stage": stage},
            )
            user_repo = UserRepository(session)
            user = await user_repo.get_by_id(recipient.user_id)
            if user is not None:
                await user_repo.record_inactivity_stage(user, stage)
        return True

    outcome = await fan_out("inactivity-email", recipients, _email, max_concurrency)
    log.info(
        "inactivity_email_completed",
        checked=len(recipients),
        sent=outcome.done,
        failed=outcome.failed,
        reset=reset,
    )
    return {
        "success": True,
        "sent": outcome.done,
        "failed": outcome.failed,
        "checked": len(recipients),
        "reset": reset,
    }
