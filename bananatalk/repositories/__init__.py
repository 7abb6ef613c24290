"""Repository layer for data access."""

from bananatalk.repositories.content_repository import ContentRepository
from bananatalk.repositories.media_asset_repository import (
    MediaAssetRepository,
    OrphanedBlobRepository,
)
from bananatalk.repositories.notification_repository import NotificationRepository
from bananatalk.repositories.usage_counter_repository import (
    CounterState,
    CounterStore,
    UsageCounterRepository,
)
from bananatalk.repositories.user_repository import UserRepository

__all__ = [
    "ContentRepository",
    "MediaAssetRepository",
    "OrphanedBlobRepository",
    "NotificationRepository",
    "CounterState",
    "CounterStore",
    "UsageCounterRepository",
    "UserRepository",
]
