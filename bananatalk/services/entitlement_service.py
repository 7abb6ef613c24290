"""Read-only projection of a user's tier, caps and live usage."""

from datetime import datetime
from typing import Optional

from bananatalk.schemas.limits import LimitsResponse
from bananatalk.services.quota_gate import QuotaGate, QuotaSubject
from bananatalk.services.quota_windows import next_day_start, window_end
from bananatalk.tiers import (
    CATALOG_VERSION,
    UNLIMITED,
    ActionClass,
    UserTier,
    Window,
    get_cap,
    get_policy,
    resolve_tier,
    window_for,
)
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


class EntitlementService:
    """Builds the limits projection clients use to render remaining quota.

    Never increments or writes; counters from a previous window read as 0.
    """

    def __init__(self, gate: QuotaGate):
        self.gate = gate

    async def project(self, subject: QuotaSubject, now: Optional[datetime] = None) -> LimitsResponse:
        now = now or self.gate.clock.now()
        tier = resolve_tier(subject, now)
        policy = get_policy(tier)
        usage = await self.gate.snapshot(subject, now)

        caps: dict[str, int] = {}
        remaining: dict[str, int | None] = {}
        windows: dict[str, str] = {}
        for action_class in ActionClass:
            cap = get_cap(tier, action_class)
            used = usage.get(action_class, 0)
            key = str(action_class)
            caps[key] = cap
            remaining[key] = None if cap == UNLIMITED else max(0, cap - used)
            windows[key] = str(window_for(action_class))

        hourly_reset_at = window_end(Window.HOURLY, now)
        assert hourly_reset_at is not None

        log.debug("limits projected", user_id=str(subject.user_id), tier=str(tier))

        return LimitsResponse(
            tier=str(tier),
            is_vip=tier == UserTier.VIP,
            vip_expires_at=subject.vip_expires_at if tier == UserTier.VIP else None,
            caps=caps,
            usage={str(k): v for k, v in usage.items()},
            remaining=remaining,
            windows=windows,
            upgrade_available=policy.upgrade_available,
            reset_at=next_day_start(now, self.gate.tz_name),
            hourly_reset_at=hourly_reset_at,
            entitlements=policy.entitlements(),
            catalog_version=CATALOG_VERSION,
        )
