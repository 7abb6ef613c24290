"""Repository for windowed usage counters with compare-and-set writes."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bananatalk.exceptions import DependencyUnavailableError
from bananatalk.models.usage_counter import UsageCounter
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CounterState:
    count: int
    anchor: datetime


class CounterStore(Protocol):
    """Persistent per-user, per-class counters."""

    async def get(self, user_id: UUID, action_class: str) -> CounterState | None: ...

    async def get_all(self, user_id: UUID) -> dict[str, CounterState]: ...

    async def create_if_absent(
        self, user_id: UUID, action_class: str, anchor: datetime
    ) -> CounterState: ...

    async def compare_and_set(
        self,
        user_id: UUID,
        action_class: str,
        expected: CounterState,
        new: CounterState,
    ) -> bool: ...


class UsageCounterRepository:
    """PostgreSQL counter store.

    Each operation runs in its own short transaction so an admitted increment
    is durable regardless of what the request does afterwards.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError, OSError) as e:
            log.error("counter store unavailable", error=str(e), error_type=type(e).__name__)
            raise DependencyUnavailableError("counter-store") from e

    async def get(self, user_id: UUID, action_class: str) -> CounterState | None:
        """Get the stored counter for (user, class), or None if never used."""
        async with self._transaction() as session:
            result = await session.execute(
                select(UsageCounter.count, UsageCounter.anchor).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.action_class == action_class,
                )
            )
            row = result.one_or_none()
        if row is None:
            return None
        return CounterState(count=row.count, anchor=row.anchor)

    async def get_all(self, user_id: UUID) -> dict[str, CounterState]:
        """Get every stored counter of a user keyed by action class."""
        async with self._transaction() as session:
            result = await session.execute(
                select(UsageCounter.action_class, UsageCounter.count, UsageCounter.anchor).where(
                    UsageCounter.user_id == user_id
                )
            )
            rows = result.fetchall()
        return {row.action_class: CounterState(count=row.count, anchor=row.anchor) for row in rows}

    async def create_if_absent(
        self, user_id: UUID, action_class: str, anchor: datetime
    ) -> CounterState:
        """Insert a zeroed counter unless one exists; return the stored state."""
        async with self._transaction() as session:
            await session.execute(
                insert(UsageCounter)
                .values(user_id=user_id, action_class=action_class, count=0, anchor=anchor)
                .on_conflict_do_nothing(constraint="uq_usage_counters_user_class")
            )
            result = await session.execute(
                select(UsageCounter.count, UsageCounter.anchor).where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.action_class == action_class,
                )
            )
            row = result.one()
        log.debug("counter ensured", user_id=str(user_id), action_class=action_class)
        return CounterState(count=row.count, anchor=row.anchor)

    async def compare_and_set(
        self,
        user_id: UUID,
        action_class: str,
        expected: CounterState,
        new: CounterState,
    ) -> bool:
        """Write ``new`` only if the row still holds ``expected``.

        Returns False when a concurrent writer got there first.
        """
        async with self._transaction() as session:
            result = await session.execute(
                update(UsageCounter)
                .where(
                    UsageCounter.user_id == user_id,
                    UsageCounter.action_class == action_class,
                    UsageCounter.count == expected.count,
                    UsageCounter.anchor == expected.anchor,
                )
                .values(count=new.count, anchor=new.anchor)
            )
        swapped = result.rowcount == 1
        log.debug(
            "counter compare-and-set",
            user_id=str(user_id),
            action_class=action_class,
            expected=expected.count,
            new=new.count,
            swapped=swapped,
        )
        return swapped
