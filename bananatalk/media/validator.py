"""Post-admission video ingest: upload, probe, enforce policy, compensate."""

import os
import uuid
from dataclasses import dataclass
from typing import Awaitable, BinaryIO, Callable, Iterable, Optional
from uuid import UUID

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from bananatalk.exceptions import DependencyUnavailableError, MediaValidationError
from bananatalk.media.probe import VideoMetadata, VideoProber
from bananatalk.media.storage import ObjectStorage, UploadTooLargeError
from bananatalk.media.upload import upload_too_large
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

# (blob_key, reason, last_error)
OrphanRecorder = Callable[[str, str, str], Awaitable[None]]

_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
    "video/3gpp": ".3gp",
    "video/x-m4v": ".m4v",
}


@dataclass(frozen=True, slots=True)
class ValidatedVideo:
    blob_key: str
    url: str
    mime_type: str
    size_bytes: int
    duration_seconds: float
    width: Optional[int]
    height: Optional[int]
    codec: Optional[str]
    thumbnail_key: Optional[str] = None
    thumbnail_url: Optional[str] = None


def build_blob_key(resource: str, owner_id: UUID, filename: Optional[str], content_type: str) -> str:
    """Server-generated key under the owner's namespace; client names only contribute an extension."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in _EXTENSIONS.values():
        ext = _EXTENSIONS.get(content_type, ".mp4")
    return f"media/{resource}/{owner_id}/{uuid.uuid4().hex}{ext}"


def thumbnail_key_for(blob_key: str) -> str:
    stem, _ = os.path.splitext(blob_key)
    return f"{stem}-thumb.jpg"


class MediaValidator:
    """Validates short-form video after the quota gate has admitted the upload.

    The stored object is probed, not the request payload. Any rejection
    deletes the uploaded blob; if the delete keeps failing the key is handed
    to ``orphan_recorder`` for the reconciliation sweep.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        prober: VideoProber,
        allowed_mime_types: Iterable[str],
        allowed_codecs: Iterable[str],
        max_duration_seconds: int = 600,
        thumbnail_at_seconds: float = 1.0,
        delete_attempts: int = 4,
        delete_backoff_seconds: float = 0.5,
        orphan_recorder: Optional[OrphanRecorder] = None,
    ):
        self.storage = storage
        self.prober = prober
        self.allowed_mime_types = frozenset(allowed_mime_types)
        self.allowed_codecs = frozenset(allowed_codecs)
        self.max_duration_seconds = max_duration_seconds
        self.thumbnail_at_seconds = thumbnail_at_seconds
        self.delete_attempts = delete_attempts
        self.delete_backoff_seconds = delete_backoff_seconds
        self.orphan_recorder = orphan_recorder

    async def ingest_video(
        self,
        owner_id: UUID,
        resource: str,
        filename: Optional[str],
        content_type: Optional[str],
        stream: BinaryIO,
        max_bytes: int,
    ) -> ValidatedVideo:
        """Store and validate one video.

        Raises:
            MediaValidationError: Type, size, duration or codec violates policy.
            DependencyUnavailableError: Storage or probe tooling is unavailable or
                failed unexpectedly. The uploaded blob has been discarded.
        """
        mime_type = (content_type or "").split(";")[0].strip().lower()
        if mime_type not in self.allowed_mime_types:
            log.info("video rejected before upload", owner_id=str(owner_id), mime_type=mime_type)
            raise MediaValidationError(
                "Invalid video format. Allowed formats: MP4, MOV, AVI, WebM, 3GP",
                reason="unsupported-type",
                allowed=sorted(self.allowed_mime_types),
            )

        key = build_blob_key(resource, owner_id, filename, mime_type)

        try:
            size_bytes = await self.storage.upload_stream(key, stream, mime_type, max_bytes)
        except UploadTooLargeError:
            await self._discard(key, "too-large")
            raise upload_too_large(max_bytes)
        except DependencyUnavailableError:
            await self._discard(key, "upload-failed")
            raise
        except Exception as e:
            log.exception("video upload failed", owner_id=str(owner_id), blob_key=key)
            await self._discard(key, "upload-failed")
            raise DependencyUnavailableError(
                "object-store", "Media storage is temporarily unavailable. Please try again later."
            ) from e
        except BaseException:
            await self._discard(key, "upload-cancelled")
            raise

        try:
            url = await self.storage.presigned_url(key)
            metadata = await self.prober.probe(url)
            self._enforce_policy(metadata)
        except MediaValidationError as e:
            log.info(
                "video rejected",
                owner_id=str(owner_id),
                blob_key=key,
                reason=e.reason,
            )
            await self._discard(key, e.reason)
            raise
        except DependencyUnavailableError:
            await self._discard(key, "probe-unavailable")
            raise
        except Exception as e:
            log.exception("video check failed", owner_id=str(owner_id), blob_key=key)
            await self._discard(key, "probe-failed")
            raise DependencyUnavailableError(
                "media-probe", "Video processing is temporarily unavailable. Please try again later."
            ) from e
        except BaseException:
            await self._discard(key, "probe-cancelled")
            raise

        try:
            thumbnail_key = await self._make_thumbnail(key, url)
        except BaseException:
            await self._discard(key, "thumbnail-cancelled")
            await self._discard(thumbnail_key_for(key), "thumbnail-cancelled")
            raise

        log.info(
            "video validated",
            owner_id=str(owner_id),
            blob_key=key,
            duration_seconds=metadata.duration_seconds,
            size_bytes=size_bytes,
            has_thumbnail=thumbnail_key is not None,
        )
        return ValidatedVideo(
            blob_key=key,
            url=self.storage.public_url(key),
            mime_type=mime_type,
            size_bytes=size_bytes,
            duration_seconds=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            codec=metadata.codec,
            thumbnail_key=thumbnail_key,
            thumbnail_url=self.storage.public_url(thumbnail_key) if thumbnail_key else None,
        )

    def _enforce_policy(self, metadata: VideoMetadata) -> None:
        if metadata.duration_seconds <= 0:
            raise MediaValidationError("Video has no playable duration", reason="duration")
        if metadata.duration_seconds > self.max_duration_seconds:
            raise MediaValidationError(
                f"duration exceeds {self.max_duration_seconds} seconds",
                reason="duration",
                maxDuration=self.max_duration_seconds,
                duration=round(metadata.duration_seconds, 2),
            )
        if metadata.codec not in self.allowed_codecs:
            raise MediaValidationError(
                f"Unsupported video codec: {metadata.codec}",
                reason="codec",
                codec=metadata.codec,
                allowed=sorted(self.allowed_codecs),
            )

    async def _make_thumbnail(self, key: str, url: str) -> Optional[str]:
        thumb_key = thumbnail_key_for(key)
        try:
            frame = await self.prober.extract_thumbnail(url, self.thumbnail_at_seconds)
            await self.storage.upload_bytes(thumb_key, frame, "image/jpeg")
        except Exception as e:
            log.warning("thumbnail skipped", blob_key=key, error=str(e), error_type=type(e).__name__)
            return None
        return thumb_key

    async def discard(self, video: ValidatedVideo, reason: str) -> None:
        """Delete an accepted video and its thumbnail that will not be kept."""
        await self._discard(video.blob_key, reason)
        if video.thumbnail_key:
            await self._discard(video.thumbnail_key, reason)

    async def _discard(self, key: str, reason: str) -> None:
        """Delete a rejected blob, retrying transient failures."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.delete_attempts),
                wait=wait_exponential(multiplier=self.delete_backoff_seconds, max=8),
                retry=retry_if_exception_type(DependencyUnavailableError),
                reraise=True,
            ):
                with attempt:
                    await self.storage.delete(key)
        except Exception as e:
            log.error(
                "compensating delete failed",
                blob_key=key,
                reason=reason,
                attempts=self.delete_attempts,
                error_type=type(e).__name__,
            )
            await self._record_orphan(key, reason, str(e))
            return
        log.info("rejected blob deleted", blob_key=key, reason=reason)

    async def _record_orphan(self, key: str, reason: str, error: str) -> None:
        if self.orphan_recorder is None:
            log.error("orphaned blob not recorded", blob_key=key, reason=reason)
            return
        try:
            await self.orphan_recorder(key, reason, error)
        except Exception as e:
            # Must not mask the validation error being reported to the caller
            log.error(
                "orphan record failed",
                blob_key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
