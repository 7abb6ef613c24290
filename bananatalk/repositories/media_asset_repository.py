"""Repositories for validated media and blobs awaiting reconciliation."""

from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bananatalk.models.media_asset import MediaAsset, OrphanedBlob
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


class MediaAssetRepository:
    """Repository for MediaAsset rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: UUID,
        resource: str,
        resource_id: UUID,
        blob_key: str,
        mime_type: str,
        size_bytes: int,
        duration_seconds: float,
        width: Optional[int] = None,
        height: Optional[int] = None,
        codec: Optional[str] = None,
        thumbnail_key: Optional[str] = None,
    ) -> MediaAsset:
        """
        Persist a validated upload.

        Caller is responsible for committing the transaction.
        """
        asset = MediaAsset(
            user_id=user_id,
            resource=resource,
            resource_id=resource_id,
            blob_key=blob_key,
            mime_type=mime_type,
            size_bytes=size_bytes,
            duration_seconds=duration_seconds,
            width=width,
            height=height,
            codec=codec,
            thumbnail_key=thumbnail_key,
        )
        self.session.add(asset)
        await self.session.flush()
        log.info(
            "media asset created",
            user_id=str(user_id),
            resource=resource,
            resource_id=str(resource_id),
            blob_key=blob_key,
        )
        return asset


class OrphanedBlobRepository:
    """Queue of blobs whose compensating delete did not succeed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, blob_key: str, reason: str, error: Optional[str] = None) -> None:
        """Insert or refresh an orphan entry for ``blob_key``."""
        stmt = insert(OrphanedBlob).values(blob_key=blob_key, reason=reason, last_error=error)
        await self.session.execute(
            stmt.on_conflict_do_update(
                index_elements=[OrphanedBlob.blob_key],
                set_={"last_error": stmt.excluded.last_error, "reason": stmt.excluded.reason},
            )
        )
        log.warning("orphaned blob recorded", blob_key=blob_key, reason=reason)

    async def list_pending(self, limit: int) -> list[OrphanedBlob]:
        result = await self.session.execute(
            select(OrphanedBlob).order_by(OrphanedBlob.created_at).limit(limit)
        )
        return list(result.scalars().all())

    async def remove(self, orphan_id: UUID) -> None:
        await self.session.execute(delete(OrphanedBlob).where(OrphanedBlob.id == orphan_id))

    async def mark_failed(self, orphan_id: UUID, error: str) -> None:
        await self.session.execute(
            update(OrphanedBlob)
            .where(OrphanedBlob.id == orphan_id)
            .values(attempts=OrphanedBlob.attempts + 1, last_error=error)
        )


async def record_orphaned_blob(
    session_factory: async_sessionmaker[AsyncSession], blob_key: str, reason: str, error: str
) -> None:
    """Record an orphan in its own transaction, independent of the request session."""
    async with session_factory() as session:
        async with session.begin():
            await OrphanedBlobRepository(session).record(blob_key, reason, error)
