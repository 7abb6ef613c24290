"""FastAPI dependency injection providers."""

import hmac
from functools import lru_cache, partial
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bananatalk.config import Settings, get_settings
from bananatalk.database import get_db, get_session_factory
from bananatalk.exceptions import InvalidApiKeyError, ResourceNotFoundError
from bananatalk.media.probe import VideoProber
from bananatalk.media.storage import ObjectStorage, S3ObjectStorage
from bananatalk.media.validator import MediaValidator
from bananatalk.models.user import User
from bananatalk.repositories.content_repository import ContentRepository
from bananatalk.repositories.media_asset_repository import (
    MediaAssetRepository,
    record_orphaned_blob,
)
from bananatalk.repositories.usage_counter_repository import CounterStore, UsageCounterRepository
from bananatalk.repositories.user_repository import UserRepository
from bananatalk.scheduler import JobScheduler
from bananatalk.services.auth_service import get_auth_service
from bananatalk.services.entitlement_service import EntitlementService
from bananatalk.services.quota_gate import Admission, QuotaGate, QuotaSubject
from bananatalk.tiers import ActionClass
from bananatalk.utils.clock import Clock, get_clock
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


# Type aliases for cleaner router signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
ClockDep = Annotated[Clock, Depends(get_clock)]


# ============================================================================
# Repositories (request-scoped)
# ============================================================================


def get_user_repository(db: DbSession) -> UserRepository:
    """Get UserRepository with database session."""
    return UserRepository(db)


def get_content_repository(db: DbSession) -> ContentRepository:
    """Get ContentRepository with database session."""
    return ContentRepository(db)


def get_media_asset_repository(db: DbSession) -> MediaAssetRepository:
    """Get MediaAssetRepository with database session."""
    return MediaAssetRepository(db)


UserRepoDep = Annotated[UserRepository, Depends(get_user_repository)]
ContentRepoDep = Annotated[ContentRepository, Depends(get_content_repository)]
MediaAssetRepoDep = Annotated[MediaAssetRepository, Depends(get_media_asset_repository)]


# ============================================================================
# Quota
# ============================================================================


def get_counter_store(session_factory: SessionFactoryDep) -> CounterStore:
    """Counter store owning its own short transactions."""
    return UsageCounterRepository(session_factory)


CounterStoreDep = Annotated[CounterStore, Depends(get_counter_store)]


def get_quota_gate(store: CounterStoreDep, clock: ClockDep, settings: SettingsDep) -> QuotaGate:
    return QuotaGate(
        store=store,
        clock=clock,
        tz_name=settings.quota_timezone,
        max_attempts=settings.quota_cas_max_attempts,
        timeout_seconds=settings.quota_gate_timeout_seconds,
    )


QuotaGateDep = Annotated[QuotaGate, Depends(get_quota_gate)]


def get_entitlement_service(gate: QuotaGateDep) -> EntitlementService:
    return EntitlementService(gate)


EntitlementServiceDep = Annotated[EntitlementService, Depends(get_entitlement_service)]


# ============================================================================
# Authentication Dependencies
# ============================================================================


async def get_current_user_required(
    user_repo: UserRepoDep,
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> User:
    """Get current user, raise 401 if not authenticated."""
    user_id = get_auth_service().verify_token(authorization)
    user = await user_repo.get_by_id(user_id)
    if user is None:
        raise ResourceNotFoundError("User", str(user_id))
    return user


CurrentUserRequired = Annotated[User, Depends(get_current_user_required)]


def get_quota_subject(user: CurrentUserRequired) -> QuotaSubject:
    """Snapshot of the caller's tier fields threaded through the request."""
    return QuotaSubject.from_user(user)


QuotaSubjectDep = Annotated[QuotaSubject, Depends(get_quota_subject)]


def require_quota(action_class: ActionClass) -> Callable[..., Awaitable[Admission]]:
    """Build a dependency that admits one ``action_class`` action or raises the denial."""

    async def enforce(subject: QuotaSubjectDep, gate: QuotaGateDep) -> Admission:
        return await gate.check(subject, action_class)

    enforce.__name__ = f"require_{action_class}_quota"
    return enforce


MessageQuota = Annotated[Admission, Depends(require_quota(ActionClass.MESSAGES))]
VoiceMessageQuota = Annotated[Admission, Depends(require_quota(ActionClass.VOICE_MESSAGES))]
MomentQuota = Annotated[Admission, Depends(require_quota(ActionClass.MOMENTS))]
StoryQuota = Annotated[Admission, Depends(require_quota(ActionClass.STORIES))]
CommentQuota = Annotated[Admission, Depends(require_quota(ActionClass.COMMENTS))]
ProfileViewQuota = Annotated[Admission, Depends(require_quota(ActionClass.PROFILE_VIEWS))]
WaveQuota = Annotated[Admission, Depends(require_quota(ActionClass.WAVES))]
FollowQuota = Annotated[Admission, Depends(require_quota(ActionClass.FOLLOWS))]
NearbySearchQuota = Annotated[Admission, Depends(require_quota(ActionClass.NEARBY_SEARCH))]
VoiceRoomQuota = Annotated[Admission, Depends(require_quota(ActionClass.VOICE_ROOMS))]
VocabularyQuota = Annotated[Admission, Depends(require_quota(ActionClass.VOCABULARY))]


# ============================================================================
# Media
# ============================================================================


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    """Process-wide object storage client."""
    settings = get_settings()
    return S3ObjectStorage(
        bucket_name=settings.storage_bucket,
        region=settings.storage_region,
        endpoint_url=settings.storage_endpoint_url,
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        public_base_url=settings.storage_public_base_url,
        presign_ttl_seconds=settings.storage_presign_ttl_seconds,
    )


def get_video_prober(settings: SettingsDep) -> VideoProber:
    return VideoProber(
        ffprobe_path=settings.ffprobe_path,
        ffmpeg_path=settings.ffmpeg_path,
        timeout_seconds=settings.probe_timeout_seconds,
    )


ObjectStorageDep = Annotated[ObjectStorage, Depends(get_object_storage)]
VideoProberDep = Annotated[VideoProber, Depends(get_video_prober)]


def get_media_validator(
    storage: ObjectStorageDep,
    prober: VideoProberDep,
    settings: SettingsDep,
    session_factory: SessionFactoryDep,
) -> MediaValidator:
    return MediaValidator(
        storage=storage,
        prober=prober,
        allowed_mime_types=settings.get_allowed_video_mime_types(),
        allowed_codecs=settings.get_allowed_video_codecs(),
        max_duration_seconds=settings.max_video_duration_seconds,
        thumbnail_at_seconds=settings.thumbnail_at_seconds,
        delete_attempts=settings.media_delete_attempts,
        orphan_recorder=partial(record_orphaned_blob, session_factory),
    )


MediaValidatorDep = Annotated[MediaValidator, Depends(get_media_validator)]


# ============================================================================
# Scheduler
# ============================================================================


async def get_scheduler(request: Request) -> JobScheduler:
    """Get the job scheduler from app state."""
    return request.app.state.scheduler


SchedulerDep = Annotated[JobScheduler, Depends(get_scheduler)]


# ============================================================================
# API Key Dependencies
# ============================================================================


def verify_api_key(
    settings: SettingsDep,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Verify the X-Api-Key header matches the configured API key."""
    if not settings.api_key or not x_api_key:
        log.warning("ops api key rejected", reason="missing key or unconfigured")
        raise InvalidApiKeyError()
    if not hmac.compare_digest(x_api_key, settings.api_key):
        log.warning("ops api key rejected", reason="key mismatch")
        raise InvalidApiKeyError()


ApiKeyCheck = Annotated[None, Depends(verify_api_key)]
