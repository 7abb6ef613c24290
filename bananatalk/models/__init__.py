"""Database models."""

from bananatalk.models.user import User
from bananatalk.models.usage_counter import UsageCounter
from bananatalk.models.content import Story, Moment
from bananatalk.models.media_asset import MediaAsset, OrphanedBlob
from bananatalk.models.notification import Notification, PushToken

__all__ = [
    "User",
    "UsageCounter",
    "Story",
    "Moment",
    "MediaAsset",
    "OrphanedBlob",
    "Notification",
    "PushToken",
]
