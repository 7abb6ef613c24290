"""Story expiry sweep."""

from typing import Any

from bananatalk.repositories.content_repository import ContentRepository
from bananatalk.tasks.utils import SessionFactory, unit_of_work
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


async def archive_expired_stories(session_factory: SessionFactory, clock: Clock) -> dict[str, Any]:
    """Move active stories past their expiry to the archived state.

    Idempotent: a second run in the same instant archives nothing.
    """
    now = clock.now()
    log.info("story_archive_started")
    async with unit_of_work(session_factory) as session:
        archived = await ContentRepository(session).archive_expired_stories(now)
    log.info("story_archive_completed", archived=archived)
    return {"success": True, "archived": archived}
