"""Helpers shared by the maintenance jobs."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

SessionFactory = async_sessionmaker[AsyncSession]


@dataclass
class FanOutResult:
    done: int = 0
    skipped: int = 0
    failed: int = 0


@asynccontextmanager
async def unit_of_work(session_factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Session wrapped in a transaction that commits on exit and rolls back on error."""
    async with session_factory() as session:
        async with session.begin():
            yield session


async def fan_out(
    job: str,
    items: Iterable[T],
    worker: Callable[[T], Awaitable[bool]],
    max_concurrency: int,
) -> FanOutResult:
    """Run ``worker`` over ``items`` with bounded concurrency.

    A worker returns True when it acted and False when the item needed
    nothing. Exceptions are counted as failures and never propagate.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    result = FanOutResult()

    async def _guarded(item: T) -> None:
        async with semaphore:
            try:
                acted = await worker(item)
            except Exception as e:
                result.failed += 1
                log.warning(
                    "job item failed",
                    job=job,
                    item=str(item),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return
        if acted:
            result.done += 1
        else:
            result.skipped += 1

    await asyncio.gather(*(_guarded(item) for item in items))
    return result
