"""VIP subscription bookkeeping."""

from datetime import timedelta
from typing import Any

from bananatalk.repositories.user_repository import UserRepository
from bananatalk.tasks.utils import SessionFactory, unit_of_work
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


async def reconcile_vip_expiry(
    session_factory: SessionFactory, clock: Clock, grace_period_hours: int = 24
) -> dict[str, Any]:
    """Persist the regular tier for VIPs expired longer than the grace period.

    Only tidies stored data: the gate already treats lapsed VIPs as regular.
    """
    cutoff = clock.now() - timedelta(hours=grace_period_hours)
    log.info("vip_expiry_reconcile_started", cutoff=cutoff.isoformat())
    async with unit_of_work(session_factory) as session:
        demoted = await UserRepository(session).demote_expired_vips(cutoff)
    log.info("vip_expiry_reconcile_completed", demoted=demoted)
    return {"success": True, "demoted": demoted}
