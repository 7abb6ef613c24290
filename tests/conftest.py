"""Shared pytest fixtures."""

# Clear settings cache before any imports to prevent stale values
from bananatalk.config import get_settings

get_settings.cache_clear()

import pytest
import uuid
from unittest.mock import AsyncMock, Mock
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from bananatalk.services.quota_gate import QuotaGate, QuotaSubject
from tests.fakes import InMemoryCounterStore, ManualClock


@pytest.fixture
def clock():
    """A manual clock starting at 2024-01-01T00:00Z."""
    return ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def counter_store():
    """An empty in-memory counter store."""
    return InMemoryCounterStore()


@pytest.fixture
def quota_gate(counter_store, clock):
    """Gate over the in-memory store with enough attempts for 20-way races."""
    return QuotaGate(counter_store, clock, tz_name="UTC", max_attempts=25)


@pytest.fixture
def make_subject():
    """Factory for request subjects."""

    def _make(tier="regular", vip_expires_at=None, user_id=None):
        return QuotaSubject(
            user_id=user_id or uuid.uuid4(),
            tier=tier,
            vip_expires_at=vip_expires_at,
        )

    return _make


# Database mocking fixtures


@pytest.fixture
def mock_async_session():
    """Create a mock AsyncSession for repository tests."""
    session = AsyncMock()

    # Mock result object for execute
    mock_result = Mock()
    mock_result.scalar_one_or_none = Mock(return_value=None)
    mock_result.scalar_one = Mock(return_value=0)
    mock_result.scalars = Mock(return_value=Mock(all=Mock(return_value=[])))
    mock_result.fetchall = Mock(return_value=[])
    mock_result.one_or_none = Mock(return_value=None)
    mock_result.rowcount = 0

    session.execute = AsyncMock(return_value=mock_result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.refresh = AsyncMock()
    session.add = Mock()
    session.delete = AsyncMock()

    @asynccontextmanager
    async def begin():
        yield

    session.begin = begin

    return session


@pytest.fixture
def mock_session_factory(mock_async_session):
    """Session factory yielding ``mock_async_session`` as an async context manager."""

    @asynccontextmanager
    async def factory():
        yield mock_async_session

    return factory


@pytest.fixture
def sample_uuid():
    """Return a sample UUID."""
    return uuid.uuid4()
