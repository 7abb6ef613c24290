"""Unit tests for retention cleanup jobs."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from bananatalk.tasks.cleanup_tasks import (
    cleanup_notifications,
    cleanup_push_tokens,
    sweep_orphaned_blobs,
)
from tests.fakes import FakeObjectStorage, ManualClock


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 6, 1, 2, 0, tzinfo=timezone.utc))


def _ids_result(count):
    result = Mock()
    result.fetchall.return_value = [(uuid.uuid4(),) for _ in range(count)]
    return result


class TestCleanupPushTokens:
    """Tests for cleanup_push_tokens."""

    async def test_deletes_stale_tokens_in_batches(self, clock, mock_async_session, mock_session_factory):
        """Verify the job deletes tokens using batched deletes and commits per batch."""
        mock_async_session.execute = AsyncMock(
            side_effect=[
                _ids_result(3),  # SELECT ids batch 1
                None,  # DELETE batch 1
                _ids_result(2),  # SELECT ids batch 2
                None,  # DELETE batch 2
                _ids_result(0),  # SELECT ids batch 3 (empty, stop)
            ]
        )

        result = await cleanup_push_tokens(mock_session_factory, clock, retention_days=90, batch_size=3)

        assert result["success"] is True
        assert result["removed"] == 5
        assert mock_async_session.commit.call_count == 2

    async def test_cutoff_uses_retention_days(self, clock, mock_async_session, mock_session_factory):
        mock_async_session.execute = AsyncMock(return_value=_ids_result(0))

        result = await cleanup_push_tokens(mock_session_factory, clock, retention_days=90)

        assert result["removed"] == 0
        assert result["cutoff_date"] == "2024-03-03T02:00:00+00:00"
        mock_async_session.commit.assert_not_called()


class TestCleanupNotifications:
    """Tests for cleanup_notifications."""

    async def test_deletes_old_notifications(self, clock, mock_async_session, mock_session_factory):
        mock_async_session.execute = AsyncMock(
            side_effect=[_ids_result(4), None, _ids_result(0)]
        )

        result = await cleanup_notifications(mock_session_factory, clock, retention_days=30)

        assert result == {
            "success": True,
            "deleted": 4,
            "cutoff_date": "2024-05-02T02:00:00+00:00",
        }

    async def test_database_error_propagates(self, clock, mock_async_session, mock_session_factory):
        from sqlalchemy.exc import OperationalError

        mock_async_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(OperationalError):
            await cleanup_notifications(mock_session_factory, clock)


class TestSweepOrphanedBlobs:
    """Tests for sweep_orphaned_blobs."""

    @pytest.fixture
    def orphans(self):
        return [Mock(id=uuid.uuid4(), blob_key=f"media/stories/u/{i}.mp4") for i in range(3)]

    async def test_removes_deleted_and_marks_failures(self, orphans, mock_session_factory):
        storage = FakeObjectStorage(delete_failures=1)
        repo = AsyncMock()
        repo.list_pending = AsyncMock(return_value=orphans)

        with patch("bananatalk.tasks.cleanup_tasks.OrphanedBlobRepository", return_value=repo):
            result = await sweep_orphaned_blobs(mock_session_factory, storage, limit=10)

        assert result == {"success": True, "removed": 2, "failed": 1}
        repo.list_pending.assert_awaited_once_with(10)
        repo.mark_failed.assert_awaited_once()
        assert repo.mark_failed.await_args.args[0] == orphans[0].id
        assert [c.args[0] for c in repo.remove.await_args_list] == [orphans[1].id, orphans[2].id]

    async def test_nothing_pending(self, mock_session_factory):
        repo = AsyncMock()
        repo.list_pending = AsyncMock(return_value=[])

        with patch("bananatalk.tasks.cleanup_tasks.OrphanedBlobRepository", return_value=repo):
            result = await sweep_orphaned_blobs(mock_session_factory, FakeObjectStorage())

        assert result == {"success": True, "removed": 0, "failed": 0}

    async def test_store_outage_counts_every_item(self, orphans, mock_session_factory):
        storage = FakeObjectStorage(delete_failures=10)
        repo = AsyncMock()
        repo.list_pending = AsyncMock(return_value=orphans)

        with patch("bananatalk.tasks.cleanup_tasks.OrphanedBlobRepository", return_value=repo):
            result = await sweep_orphaned_blobs(mock_session_factory, storage)

        assert result["failed"] == 3
        repo.remove.assert_not_awaited()
