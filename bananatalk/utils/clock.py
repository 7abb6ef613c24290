"""Wall-clock abstraction.

Every time-based decision (quota windows, VIP expiry, job schedules) reads
the time through a ``Clock`` so tests can substitute a controllable one.
"""

import asyncio
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant plus a matching sleep primitive."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC instant."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds`` of this clock's time."""
        ...


class SystemClock:
    """Clock backed by the host wall clock and the running event loop."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock."""
    return system_clock
