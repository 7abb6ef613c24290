"""Retention cleanup jobs."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from bananatalk.exceptions import DependencyUnavailableError
from bananatalk.media.storage import ObjectStorage
from bananatalk.models.notification import Notification, PushToken
from bananatalk.repositories.media_asset_repository import OrphanedBlobRepository
from bananatalk.tasks.utils import SessionFactory, unit_of_work
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

BATCH_SIZE = 2000


async def _batched_delete(
    session: AsyncSession,
    model: type[Any],
    column: InstrumentedAttribute,
    cutoff: datetime,
    batch_size: int = BATCH_SIZE,
) -> int:
    """Delete rows whose ``column`` is older than ``cutoff`` in batches.

    Commits after each batch to avoid holding long transactions.

    Returns:
        Total number of rows deleted.
    """
    total_deleted = 0

    while True:
        id_result = await session.execute(
            select(model.id).where(column < cutoff).limit(batch_size)
        )
        ids = [row[0] for row in id_result.fetchall()]

        if not ids:
            break

        await session.execute(delete(model).where(model.id.in_(ids)))
        await session.commit()
        total_deleted += len(ids)

        log.debug(
            "batch_deleted",
            model=model.__tablename__,
            batch_count=len(ids),
            total_deleted=total_deleted,
        )

    return total_deleted


async def cleanup_push_tokens(
    session_factory: SessionFactory,
    clock: Clock,
    retention_days: int = 90,
    batch_size: int = BATCH_SIZE,
) -> dict[str, Any]:
    """Remove push tokens not refreshed within ``retention_days``."""
    cutoff = clock.now() - timedelta(days=retention_days)
    log.info("push_token_cleanup_started", retention_days=retention_days)
    async with session_factory() as session:
        removed = await _batched_delete(
            session, PushToken, PushToken.last_updated, cutoff, batch_size
        )
    log.info("push_token_cleanup_completed", removed=removed)
    return {"success": True, "removed": removed, "cutoff_date": cutoff.isoformat()}


async def cleanup_notifications(
    session_factory: SessionFactory,
    clock: Clock,
    retention_days: int = 30,
    batch_size: int = BATCH_SIZE,
) -> dict[str, Any]:
    """Delete notification history older than ``retention_days``."""
    cutoff = clock.now() - timedelta(days=retention_days)
    log.info("notification_gc_started", retention_days=retention_days)
    async with session_factory() as session:
        deleted = await _batched_delete(
            session, Notification, Notification.created_at, cutoff, batch_size
        )
    log.info("notification_gc_completed", deleted=deleted)
    return {"success": True, "deleted": deleted, "cutoff_date": cutoff.isoformat()}


async def sweep_orphaned_blobs(
    session_factory: SessionFactory,
    storage: ObjectStorage,
    limit: int = 500,
) -> dict[str, Any]:
    """Retry deletes of blobs left behind by failed upload compensations."""
    log.info("orphan_blob_sweep_started")
    removed = 0
    failed = 0
    async with unit_of_work(session_factory) as session:
        repo = OrphanedBlobRepository(session)
        for orphan in await repo.list_pending(limit):
            try:
                await storage.delete(orphan.blob_key)
            except DependencyUnavailableError as e:
                failed += 1
                await repo.mark_failed(orphan.id, str(e))
                continue
            await repo.remove(orphan.id)
            removed += 1
    log.info("orphan_blob_sweep_completed", removed=removed, failed=failed)
    return {"success": True, "removed": removed, "failed": failed}
