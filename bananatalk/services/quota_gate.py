"""Pre-action quota gate.

Resolves the caller's effective tier, rolls the class window forward,
decides allow/deny and, on allow, records the consumption with a
compare-and-set write. Callers never increment on their own.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from bananatalk.exceptions import (
    DependencyUnavailableError,
    QuotaConflictError,
    QuotaExceededError,
    TierForbiddenError,
)
from bananatalk.repositories.usage_counter_repository import CounterState, CounterStore
from bananatalk.services.quota_windows import window_end, window_start
from bananatalk.tiers import (
    UNLIMITED,
    ActionClass,
    UserTier,
    Window,
    get_cap,
    get_policy,
    resolve_tier,
    window_for,
)
from bananatalk.utils.clock import Clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class QuotaSubject:
    """Request-scoped caller identity threaded through handlers."""

    user_id: UUID
    tier: str
    vip_expires_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: Any) -> QuotaSubject:
        return cls(user_id=user.id, tier=user.tier, vip_expires_at=user.vip_expires_at)


@dataclass(frozen=True, slots=True)
class Admission:
    """Successful gate decision. The counter has already been incremented."""

    action_class: ActionClass
    tier: UserTier
    cap: int
    used: Optional[int]  # None when the cap is unlimited
    reset_at: Optional[datetime]

    @property
    def unlimited(self) -> bool:
        return self.cap == UNLIMITED

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited or self.used is None:
            return None
        return max(0, self.cap - self.used)


class _CounterContention(Exception):
    """A concurrent writer changed the counter between read and write."""


class QuotaGate:
    """Admission control for capped user actions."""

    def __init__(
        self,
        store: CounterStore,
        clock: Clock,
        tz_name: str = "UTC",
        max_attempts: int = 10,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.tz_name = tz_name
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds

    async def check(
        self,
        subject: QuotaSubject,
        action_class: ActionClass,
        now: Optional[datetime] = None,
    ) -> Admission:
        """Admit or deny one action for ``subject``.

        Raises:
            TierForbiddenError: The class is capped at zero for the tier.
            QuotaExceededError: The window's cap is used up.
            QuotaConflictError: Compare-and-set kept losing to concurrent writers.
            DependencyUnavailableError: The counter store is unreachable or too slow.
        """
        now = now or self.clock.now()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self._check(subject, action_class, now)
        except TimeoutError as e:
            log.error(
                "quota check timed out",
                user_id=str(subject.user_id),
                action_class=str(action_class),
                timeout_seconds=self.timeout_seconds,
            )
            raise DependencyUnavailableError("counter-store", "Quota check timed out") from e

    async def _check(
        self, subject: QuotaSubject, action_class: ActionClass, now: datetime
    ) -> Admission:
        tier = resolve_tier(subject, now)
        cap = get_cap(tier, action_class)

        if cap == UNLIMITED:
            log.debug("quota unlimited", user_id=str(subject.user_id), action_class=str(action_class))
            return Admission(action_class=action_class, tier=tier, cap=cap, used=None, reset_at=None)

        upgrade_available = get_policy(tier).upgrade_available
        if cap == 0:
            log.info(
                "quota forbidden for tier",
                user_id=str(subject.user_id),
                action_class=str(action_class),
                tier=str(tier),
            )
            raise TierForbiddenError(str(action_class), str(tier), upgrade_available)

        window = window_for(action_class)
        start = window_start(window, now, self.tz_name)
        reset_at = window_end(window, now, self.tz_name)

        admission: Admission | None = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random(min=0, max=0.01),
                retry=retry_if_exception_type(_CounterContention),
                reraise=True,
            ):
                with attempt:
                    used = await self._try_increment(
                        subject, action_class, tier, cap, start, reset_at, upgrade_available
                    )
                    admission = Admission(
                        action_class=action_class, tier=tier, cap=cap, used=used, reset_at=reset_at
                    )
        except _CounterContention:
            log.warning(
                "quota compare-and-set exhausted",
                user_id=str(subject.user_id),
                action_class=str(action_class),
                attempts=self.max_attempts,
            )
            raise QuotaConflictError(str(action_class), str(tier), cap=cap)

        assert admission is not None
        log.debug(
            "quota admitted",
            user_id=str(subject.user_id),
            action_class=str(action_class),
            used=admission.used,
            cap=cap,
        )
        return admission

    async def _try_increment(
        self,
        subject: QuotaSubject,
        action_class: ActionClass,
        tier: UserTier,
        cap: int,
        start: datetime,
        reset_at: Optional[datetime],
        upgrade_available: bool,
    ) -> int:
        stored = await self.store.get(subject.user_id, action_class)
        if stored is None:
            stored = await self.store.create_if_absent(subject.user_id, action_class, start)

        # Rollover: a counter anchored before this window reads as zero
        current = stored if stored.anchor >= start else CounterState(count=0, anchor=start)

        if current.count >= cap:
            log.info(
                "quota exceeded",
                user_id=str(subject.user_id),
                action_class=str(action_class),
                used=current.count,
                cap=cap,
                tier=str(tier),
            )
            raise QuotaExceededError(
                action_class=str(action_class),
                tier=str(tier),
                used=current.count,
                cap=cap,
                reset_at=reset_at,
                upgrade_available=upgrade_available,
            )

        new = CounterState(count=current.count + 1, anchor=start)
        if not await self.store.compare_and_set(subject.user_id, action_class, stored, new):
            raise _CounterContention()
        return new.count

    async def snapshot(
        self, subject: QuotaSubject, now: Optional[datetime] = None
    ) -> dict[ActionClass, int]:
        """Effective usage per action class at ``now``, without writing.

        Counters anchored before their current window read as zero.

        Raises:
            DependencyUnavailableError: The counter store is unreachable or too slow.
        """
        now = now or self.clock.now()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                stored = await self.store.get_all(subject.user_id)
        except TimeoutError as e:
            log.error(
                "quota snapshot timed out",
                user_id=str(subject.user_id),
                timeout_seconds=self.timeout_seconds,
            )
            raise DependencyUnavailableError("counter-store", "Quota snapshot timed out") from e

        usage: dict[ActionClass, int] = {}
        for action_class in ActionClass:
            state = stored.get(str(action_class))
            start = window_start(window_for(action_class), now, self.tz_name)
            usage[action_class] = state.count if state and state.anchor >= start else 0
        return usage

    async def release(
        self,
        subject: QuotaSubject,
        action_class: ActionClass,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """Give back one unit of a lifetime counter (e.g. a deleted vocabulary entry).

        Windowed classes are never refunded; returns None for them.
        """
        if window_for(action_class) != Window.LIFETIME:
            log.debug("release ignored for windowed class", action_class=str(action_class))
            return None

        now = now or self.clock.now()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                released = await self._release(subject, action_class, now)
        except TimeoutError as e:
            log.error(
                "quota release timed out",
                user_id=str(subject.user_id),
                action_class=str(action_class),
                timeout_seconds=self.timeout_seconds,
            )
            raise DependencyUnavailableError("counter-store", "Quota release timed out") from e

        log.debug(
            "quota released",
            user_id=str(subject.user_id),
            action_class=str(action_class),
            count=released,
        )
        return released

    async def _release(
        self, subject: QuotaSubject, action_class: ActionClass, now: datetime
    ) -> int:
        start = window_start(Window.LIFETIME, now, self.tz_name)
        released = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random(min=0, max=0.01),
                retry=retry_if_exception_type(_CounterContention),
                reraise=True,
            ):
                with attempt:
                    stored = await self.store.get(subject.user_id, action_class)
                    if stored is None or stored.count == 0:
                        released = 0
                    else:
                        new = CounterState(count=stored.count - 1, anchor=start)
                        if not await self.store.compare_and_set(
                            subject.user_id, action_class, stored, new
                        ):
                            raise _CounterContention()
                        released = new.count
        except _CounterContention:
            tier = resolve_tier(subject, now)
            raise QuotaConflictError(str(action_class), str(tier))
        return released
