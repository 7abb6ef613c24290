"""Repository for User model operations."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bananatalk.models.notification import PushToken
from bananatalk.models.user import User
from bananatalk.tiers import UserTier
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


class UserRepository:
    """Repository for the user queries used by auth, the gate and jobs.

    Caller is responsible for committing the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: UUID | str) -> Optional[User]:
        """Get user by UUID."""
        log.debug("query user by id", user_id=str(user_id))
        result = await self.session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        log.debug("query result", found=user is not None)
        return user

    async def list_reengagement_candidates(
        self, inactive_before: datetime, limit: int
    ) -> list[User]:
        """Users inactive since ``inactive_before`` who opted in to marketing and have a push token."""
        has_token = exists().where(PushToken.user_id == User.id)
        result = await self.session.execute(
            select(User)
            .where(
                User.last_activity_at < inactive_before,
                User.notifications_enabled.is_(True),
                User.marketing_opt_in.is_(True),
                has_token,
            )
            .order_by(User.last_activity_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_vips_expiring_between(
        self, start: datetime, end: datetime, limit: int
    ) -> list[User]:
        """VIP users whose subscription ends in [start, end)."""
        result = await self.session.execute(
            select(User)
            .where(
                User.tier == UserTier.VIP.value,
                User.notifications_enabled.is_(True),
                User.vip_expires_at >= start,
                User.vip_expires_at < end,
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_inactive_for_email(
        self, inactive_before: datetime, limit: int, completed_stage: str
    ) -> list[User]:
        """Users with email notifications on whose last activity predates ``inactive_before``.

        Users who were already sent ``completed_stage`` have nothing left to
        receive and are left out, so they cannot fill the batch.
        """
        sent = User.inactivity_emails_sent
        result = await self.session.execute(
            select(User)
            .where(
                User.email.is_not(None),
                User.email_notifications.is_(True),
                User.last_activity_at.is_not(None),
                User.last_activity_at <= inactive_before,
                or_(sent.is_(None), ~sent.contains([completed_stage])),
            )
            .order_by(User.last_activity_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def reset_inactivity_stages(self, active_since: datetime) -> int:
        """Clear sent inactivity stages for users active again since ``active_since``."""
        result = await self.session.execute(
            update(User)
            .where(
                User.last_activity_at > active_since,
                func.jsonb_array_length(User.inactivity_emails_sent) > 0,
            )
            .values(inactivity_emails_sent=[])
        )
        return result.rowcount or 0

    async def record_inactivity_stage(self, user: User, stage: str) -> User:
        """Append a sent inactivity email stage to the user."""
        user.inactivity_emails_sent = [*(user.inactivity_emails_sent or []), stage]
        await self.session.flush()
        log.debug("inactivity stage recorded", user_id=str(user.id), stage=stage)
        return user

    async def demote_expired_vips(self, expired_before: datetime) -> int:
        """Persist the regular tier for VIPs whose subscription ended before ``expired_before``."""
        result = await self.session.execute(
            update(User)
            .where(
                User.tier == UserTier.VIP.value,
                User.vip_expires_at.is_not(None),
                User.vip_expires_at < expired_before,
            )
            .values(tier=UserTier.REGULAR.value)
        )
        demoted = result.rowcount or 0
        if demoted:
            log.info("expired vips demoted", count=demoted)
        return demoted
