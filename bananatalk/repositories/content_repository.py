"""Repository for stories and moments."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bananatalk.models.content import Moment, Story
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

CONTENT_MODELS: dict[str, type[Story] | type[Moment]] = {
    "stories": Story,
    "moments": Moment,
}


class ContentRepository:
    """Lookups and bulk transitions on user content."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_owned(
        self, resource: str, resource_id: UUID, user_id: UUID
    ) -> Optional[Story | Moment]:
        """Get a story or moment only if it belongs to ``user_id``."""
        model = CONTENT_MODELS[resource]
        result = await self.session.execute(
            select(model).where(model.id == resource_id, model.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def archive_expired_stories(self, now: datetime) -> int:
        """Archive active stories whose expiry has passed.

        Already archived rows are excluded, so re-running is a no-op.
        """
        result = await self.session.execute(
            update(Story)
            .where(Story.status == "active", Story.expires_at < now)
            .values(status="archived", archived_at=now)
        )
        archived = result.rowcount or 0
        log.debug("expired stories archived", count=archived)
        return archived
