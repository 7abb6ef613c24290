"""Repository for the notification outbox."""

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from bananatalk.models.notification import Notification
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


class NotificationRepository:
    """Enqueues notifications for the external push and email transports."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        user_id: UUID,
        channel: str,
        kind: str,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        """
        Add a pending notification.

        Caller is responsible for committing the transaction.
        """
        notification = Notification(
            user_id=user_id,
            channel=channel,
            kind=kind,
            payload=payload or {},
            status="pending",
        )
        self.session.add(notification)
        await self.session.flush()
        log.debug("notification enqueued", user_id=str(user_id), channel=channel, kind=kind)
        return notification
