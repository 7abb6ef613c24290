"""User tier definitions, the limit catalog and tier resolution.

Single source of truth for all tier-related logic: per-class caps, their
accounting windows, and non-numeric entitlements.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Mapping, Optional, Protocol

from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

CATALOG_VERSION = "2024-05"

UNLIMITED = -1


class UserTier(StrEnum):
    VISITOR = "visitor"
    REGULAR = "regular"
    VIP = "vip"


class Window(StrEnum):
    DAILY = "daily"
    HOURLY = "hourly"
    LIFETIME = "lifetime"


class ActionClass(StrEnum):
    MESSAGES = "messages"
    VOICE_MESSAGES = "voiceMessages"
    MOMENTS = "moments"
    STORIES = "stories"
    COMMENTS = "comments"
    PROFILE_VIEWS = "profileViews"
    WAVES = "waves"
    FOLLOWS = "follows"
    NEARBY_SEARCH = "nearbySearch"
    VOICE_ROOMS = "voiceRooms"
    VOCABULARY = "vocabulary"
    LESSONS = "lessons"
    AI_CONVERSATION = "aiConversation"
    AI_TRANSLATION = "aiTranslation"
    AI_GRAMMAR = "aiGrammar"
    AI_QUIZ = "aiQuiz"
    AI_LESSON_BUILDER = "aiLessonBuilder"
    AI_PRONUNCIATION = "aiPronunciation"
    TTS = "tts"
    STT = "stt"


ACTION_WINDOWS: dict[ActionClass, Window] = {
    ActionClass.MESSAGES: Window.DAILY,
    ActionClass.VOICE_MESSAGES: Window.DAILY,
    ActionClass.MOMENTS: Window.DAILY,
    ActionClass.STORIES: Window.DAILY,
    ActionClass.COMMENTS: Window.DAILY,
    ActionClass.PROFILE_VIEWS: Window.DAILY,
    ActionClass.WAVES: Window.DAILY,
    ActionClass.FOLLOWS: Window.DAILY,
    ActionClass.NEARBY_SEARCH: Window.DAILY,
    ActionClass.VOICE_ROOMS: Window.DAILY,
    ActionClass.VOCABULARY: Window.LIFETIME,
    ActionClass.LESSONS: Window.DAILY,
    ActionClass.AI_CONVERSATION: Window.HOURLY,
    ActionClass.AI_TRANSLATION: Window.HOURLY,
    ActionClass.AI_GRAMMAR: Window.HOURLY,
    ActionClass.AI_QUIZ: Window.HOURLY,
    ActionClass.AI_LESSON_BUILDER: Window.HOURLY,
    ActionClass.AI_PRONUNCIATION: Window.HOURLY,
    ActionClass.TTS: Window.HOURLY,
    ActionClass.STT: Window.HOURLY,
}


def window_for(action_class: ActionClass) -> Window:
    """Return the accounting window of an action class."""
    return ACTION_WINDOWS[action_class]


@dataclass(frozen=True, slots=True)
class TierPolicy:
    tier: UserTier
    caps: Mapping[ActionClass, int]  # UNLIMITED (-1) = no cap, 0 = forbidden for tier
    nearby_enabled: bool
    nearby_radius_km: int
    can_create_voice_room: bool
    can_record_voice_room: bool
    max_voice_participants: int
    voice_room_minutes: int  # UNLIMITED = no duration cap
    max_photo_upload_mb: int
    max_video_upload_mb: int
    max_voice_upload_mb: int
    perks: frozenset[str] = field(default_factory=frozenset)

    @property
    def upgrade_available(self) -> bool:
        return self.tier != UserTier.VIP

    def max_video_upload_bytes(self) -> int:
        return self.max_video_upload_mb * 1024 * 1024

    def entitlements(self) -> dict[str, object]:
        """Non-numeric entitlements exposed to clients."""
        return {
            "nearbyEnabled": self.nearby_enabled,
            "nearbyRadiusKm": self.nearby_radius_km,
            "canCreateVoiceRoom": self.can_create_voice_room,
            "canRecordVoiceRoom": self.can_record_voice_room,
            "maxVoiceParticipants": self.max_voice_participants,
            "voiceRoomMinutes": self.voice_room_minutes,
            "maxPhotoUploadMB": self.max_photo_upload_mb,
            "maxVideoUploadMB": self.max_video_upload_mb,
            "maxVoiceUploadMB": self.max_voice_upload_mb,
            "perks": sorted(self.perks),
        }


A = ActionClass

TIER_POLICIES: dict[UserTier, TierPolicy] = {
    # Unverified users or users who are just browsing
    UserTier.VISITOR: TierPolicy(
        tier=UserTier.VISITOR,
        caps={
            A.MESSAGES: 10,
            A.VOICE_MESSAGES: 0,
            A.MOMENTS: 0,
            A.STORIES: 0,
            A.COMMENTS: 5,
            A.PROFILE_VIEWS: 20,
            A.WAVES: 3,
            A.FOLLOWS: 10,
            A.NEARBY_SEARCH: 0,
            A.VOICE_ROOMS: 0,
            A.VOCABULARY: 50,
            A.LESSONS: 3,
            A.AI_CONVERSATION: 5,
            A.AI_TRANSLATION: 20,
            A.AI_GRAMMAR: 10,
            A.AI_QUIZ: 3,
            A.AI_LESSON_BUILDER: 0,
            A.AI_PRONUNCIATION: 5,
            A.TTS: 10,
            A.STT: 5,
        },
        nearby_enabled=False,
        nearby_radius_km=0,
        can_create_voice_room=False,
        can_record_voice_room=False,
        max_voice_participants=0,
        voice_room_minutes=0,
        max_photo_upload_mb=5,
        max_video_upload_mb=0,
        max_voice_upload_mb=0,
    ),
    UserTier.REGULAR: TierPolicy(
        tier=UserTier.REGULAR,
        caps={
            A.MESSAGES: 100,
            A.VOICE_MESSAGES: 20,
            A.MOMENTS: 10,
            A.STORIES: 5,
            A.COMMENTS: 50,
            A.PROFILE_VIEWS: 100,
            A.WAVES: 15,
            A.FOLLOWS: 50,
            A.NEARBY_SEARCH: 10,
            A.VOICE_ROOMS: 3,
            A.VOCABULARY: 500,
            A.LESSONS: 10,
            A.AI_CONVERSATION: 20,
            A.AI_TRANSLATION: 50,
            A.AI_GRAMMAR: 30,
            A.AI_QUIZ: 10,
            A.AI_LESSON_BUILDER: 5,
            A.AI_PRONUNCIATION: 30,
            A.TTS: 50,
            A.STT: 20,
        },
        nearby_enabled=True,
        nearby_radius_km=50,
        can_create_voice_room=True,
        can_record_voice_room=False,
        max_voice_participants=8,
        voice_room_minutes=30,
        max_photo_upload_mb=10,
        max_video_upload_mb=50,
        max_voice_upload_mb=10,
    ),
    UserTier.VIP: TierPolicy(
        tier=UserTier.VIP,
        caps={
            A.MESSAGES: UNLIMITED,
            A.VOICE_MESSAGES: UNLIMITED,
            A.MOMENTS: UNLIMITED,
            A.STORIES: UNLIMITED,
            A.COMMENTS: UNLIMITED,
            A.PROFILE_VIEWS: UNLIMITED,
            A.WAVES: UNLIMITED,
            A.FOLLOWS: UNLIMITED,
            A.NEARBY_SEARCH: UNLIMITED,
            A.VOICE_ROOMS: UNLIMITED,
            A.VOCABULARY: UNLIMITED,
            A.LESSONS: UNLIMITED,
            A.AI_CONVERSATION: 200,
            A.AI_TRANSLATION: 1000,
            A.AI_GRAMMAR: 500,
            A.AI_QUIZ: 100,
            A.AI_LESSON_BUILDER: 50,
            A.AI_PRONUNCIATION: 500,
            A.TTS: 1000,
            A.STT: 500,
        },
        nearby_enabled=True,
        nearby_radius_km=500,
        can_create_voice_room=True,
        can_record_voice_room=True,
        max_voice_participants=50,
        voice_room_minutes=UNLIMITED,
        max_photo_upload_mb=50,
        max_video_upload_mb=500,
        max_voice_upload_mb=100,
        perks=frozenset(
            {
                "adFree",
                "prioritySupport",
                "earlyAccess",
                "exclusiveBadge",
                "customThemes",
                "readReceipts",
                "whoViewedProfile",
                "undoMessage",
                "scheduleMessages",
                "canSeeOnlineStatus",
                "canSeeLastSeen",
                "priorityInSearch",
            }
        ),
    ),
}

del A


class TierSubject(Protocol):
    """Anything carrying the stored tier fields (ORM user, request context)."""

    tier: str
    vip_expires_at: Optional[datetime]


def resolve_tier(user: TierSubject, now: datetime) -> UserTier:
    """Resolve the effective tier of a user at ``now``.

    A VIP whose subscription has lapsed is treated as regular. The stored
    tier is never mutated here.
    """
    stored = getattr(user, "tier", None)
    if stored == UserTier.VIP:
        expires_at = getattr(user, "vip_expires_at", None)
        if expires_at is None or expires_at > now:
            return UserTier.VIP
        return UserTier.REGULAR
    if stored == UserTier.REGULAR:
        return UserTier.REGULAR
    return UserTier.VISITOR


def get_policy(tier: str) -> TierPolicy:
    """Return the policy row for a tier, falling back to regular."""
    try:
        return TIER_POLICIES[UserTier(tier)]
    except (KeyError, ValueError):
        log.warning("tier policy missing, using regular", tier=tier)
        return TIER_POLICIES[UserTier.REGULAR]


def get_cap(tier: str, action_class: ActionClass) -> int:
    """Look up cap(tier, class); a miss falls through to the regular row."""
    policy = get_policy(tier)
    cap = policy.caps.get(action_class)
    if cap is None:
        log.warning(
            "catalog miss, using regular cap",
            tier=tier,
            action_class=str(action_class),
            catalog_version=CATALOG_VERSION,
        )
        cap = TIER_POLICIES[UserTier.REGULAR].caps[action_class]
    return cap
