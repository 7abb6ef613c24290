"""Shared pytest fixtures for router integration tests."""

import pytest
import uuid
from contextlib import ExitStack, asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, Mock, patch

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from bananatalk.config import Settings
from bananatalk.scheduler import Job, JobScheduler, every
from tests.fakes import FakeObjectStorage, FakeProber, InMemoryCounterStore, ManualClock

API_KEY = "test-api-key"


@pytest.fixture
def api_clock():
    """Manual clock pinned to the real current instant so Retry-After stays meaningful."""
    return ManualClock(datetime.now(timezone.utc))


# Mock database before the app starts to avoid connection issues
@pytest.fixture(autouse=True)
def mock_database_init(api_clock):
    """Mock database initialization and the default scheduler for all router tests."""
    with ExitStack() as stack:
        stack.enter_context(patch("bananatalk.main.init_db", new_callable=AsyncMock))
        mock_engine = stack.enter_context(patch("bananatalk.main.engine"))
        mock_engine.dispose = AsyncMock()
        stack.enter_context(
            patch("bananatalk.main.build_scheduler", return_value=JobScheduler(api_clock))
        )
        yield


@pytest.fixture
def mock_db_session():
    """Create a mock AsyncSession for router tests."""
    session = AsyncMock(spec=AsyncSession)

    mock_result = Mock()
    mock_result.scalar_one_or_none = Mock(return_value=None)
    mock_result.scalars = Mock(return_value=Mock(all=Mock(return_value=[])))
    mock_result.fetchall = Mock(return_value=[])
    mock_result.rowcount = 0

    session.execute = AsyncMock(return_value=mock_result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.add = Mock()
    session.close = AsyncMock()

    @asynccontextmanager
    async def begin():
        yield

    session.begin = begin

    return session


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def object_storage():
    return FakeObjectStorage()


@pytest.fixture
def video_prober():
    return FakeProber()


@pytest.fixture
def mock_content_repo():
    """Content repository that owns every id by default."""
    repo = AsyncMock()
    repo.get_owned = AsyncMock(return_value=Mock())
    return repo


@pytest.fixture
def mock_media_repo():
    repo = AsyncMock()
    repo.create = AsyncMock()
    return repo


@pytest.fixture
def mock_user_repo():
    repo = AsyncMock()
    repo.get_by_id = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def test_settings():
    """Settings with an API key configured."""
    return Settings(api_key=API_KEY, jwt_secret="router-test-secret-long-enough-for-hs256")


@pytest.fixture
def scheduler(api_clock):
    """Scheduler with two cheap jobs, never started."""

    async def archive():
        return {"success": True, "archived": 2}

    async def broken():
        raise RuntimeError("smtp down")

    return JobScheduler(
        api_clock,
        [
            Job("story-archive", every(timedelta(hours=1)), archive),
            Job("inactivity-email", every(timedelta(days=1)), broken),
        ],
    )


@pytest.fixture
def mock_user():
    """Create a mock User object for authentication."""
    from bananatalk.models.user import User

    user = Mock(spec=User)
    user.id = uuid.uuid4()
    user.email = "test@example.com"
    user.tier = "regular"
    user.vip_expires_at = None
    return user


def _create_test_client(
    mock_db_session,
    counter_store,
    object_storage,
    video_prober,
    mock_content_repo,
    mock_media_repo,
    mock_user_repo,
    test_settings,
    scheduler,
    api_clock,
    *,
    mock_user=None,
):
    """Build a TestClient with all infra dependencies overridden.

    When mock_user is provided, JWT auth is bypassed. When omitted, auth
    dependencies run normally so tests can assert 401 behaviour.
    """
    from bananatalk.main import app
    from bananatalk.config import get_settings
    from bananatalk.database import get_db, get_session_factory
    from bananatalk.dependencies import (
        get_content_repository,
        get_counter_store,
        get_current_user_required,
        get_media_asset_repository,
        get_object_storage,
        get_scheduler,
        get_user_repository,
        get_video_prober,
    )
    from bananatalk.utils.clock import get_clock

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield mock_db_session

    @asynccontextmanager
    async def session_factory():
        yield mock_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_counter_store] = lambda: counter_store
    app.dependency_overrides[get_object_storage] = lambda: object_storage
    app.dependency_overrides[get_video_prober] = lambda: video_prober
    app.dependency_overrides[get_content_repository] = lambda: mock_content_repo
    app.dependency_overrides[get_media_asset_repository] = lambda: mock_media_repo
    app.dependency_overrides[get_user_repository] = lambda: mock_user_repo
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_clock] = lambda: api_clock

    if mock_user is not None:
        app.dependency_overrides[get_current_user_required] = lambda: mock_user

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def client(
    mock_db_session,
    counter_store,
    object_storage,
    video_prober,
    mock_content_repo,
    mock_media_repo,
    mock_user_repo,
    test_settings,
    scheduler,
    api_clock,
    mock_user,
):
    """Create TestClient with all dependencies overridden including auth."""
    yield from _create_test_client(
        mock_db_session,
        counter_store,
        object_storage,
        video_prober,
        mock_content_repo,
        mock_media_repo,
        mock_user_repo,
        test_settings,
        scheduler,
        api_clock,
        mock_user=mock_user,
    )


@pytest.fixture
def unauthenticated_client(
    mock_db_session,
    counter_store,
    object_storage,
    video_prober,
    mock_content_repo,
    mock_media_repo,
    mock_user_repo,
    test_settings,
    scheduler,
    api_clock,
):
    """Create TestClient WITHOUT auth override to test 401 responses."""
    yield from _create_test_client(
        mock_db_session,
        counter_store,
        object_storage,
        video_prober,
        mock_content_repo,
        mock_media_repo,
        mock_user_repo,
        test_settings,
        scheduler,
        api_clock,
    )
