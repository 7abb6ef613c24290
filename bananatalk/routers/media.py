"""Video upload router for stories and moments."""

from uuid import UUID

from fastapi import APIRouter, Request

from bananatalk.dependencies import (
    ClockDep,
    ContentRepoDep,
    MediaAssetRepoDep,
    MediaValidatorDep,
    QuotaGateDep,
    QuotaSubjectDep,
)
from bananatalk.exceptions import ResourceNotFoundError
from bananatalk.media.upload import receive_file_part
from bananatalk.schemas.media import UploadResource, VideoUploadResponse
from bananatalk.tiers import ActionClass, get_policy, resolve_tier
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["Media"])

_RESOURCE_NAMES = {
    UploadResource.STORIES: "Story",
    UploadResource.MOMENTS: "Moment",
}

# The body is read by hand, so the form is declared for the docs only
_VIDEO_FORM_SCHEMA = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "required": ["video"],
                    "properties": {"video": {"type": "string", "format": "binary"}},
                }
            }
        },
    }
}


@router.put(
    "/{resource}/{resource_id}/video",
    response_model=VideoUploadResponse,
    response_model_by_alias=True,
    openapi_extra=_VIDEO_FORM_SCHEMA,
)
async def upload_video(
    request: Request,
    resource: UploadResource,
    resource_id: UUID,
    subject: QuotaSubjectDep,
    gate: QuotaGateDep,
    content_repo: ContentRepoDep,
    media_repo: MediaAssetRepoDep,
    validator: MediaValidatorDep,
    clock: ClockDep,
) -> VideoUploadResponse:
    """Attach a video to one of the caller's stories or moments.

    Ownership is checked before the quota gate so foreign ids never consume
    quota, and the gate runs before any of the body is read. A rejected
    video still counts against the quota.
    """
    owned = await content_repo.get_owned(resource, resource_id, subject.user_id)
    if owned is None:
        raise ResourceNotFoundError(_RESOURCE_NAMES[resource], str(resource_id))

    now = clock.now()
    await gate.check(subject, ActionClass(resource.value), now)
    max_bytes = get_policy(resolve_tier(subject, now)).max_video_upload_bytes()

    video = await receive_file_part(request.headers, request.stream(), "video", max_bytes)
    try:
        validated = await validator.ingest_video(
            owner_id=subject.user_id,
            resource=resource.value,
            filename=video.filename,
            content_type=video.content_type,
            stream=video.file,
            max_bytes=max_bytes,
        )
    finally:
        video.close()

    try:
        await media_repo.create(
            user_id=subject.user_id,
            resource=resource.value,
            resource_id=resource_id,
            blob_key=validated.blob_key,
            mime_type=validated.mime_type,
            size_bytes=validated.size_bytes,
            duration_seconds=validated.duration_seconds,
            width=validated.width,
            height=validated.height,
            codec=validated.codec,
            thumbnail_key=validated.thumbnail_key,
        )
    except BaseException:
        log.error("video record not saved", blob_key=validated.blob_key)
        await validator.discard(validated, "persist-failed")
        raise

    log.info(
        "video attached",
        user_id=str(subject.user_id),
        resource=resource.value,
        resource_id=str(resource_id),
        duration_seconds=validated.duration_seconds,
    )

    return VideoUploadResponse(
        url=validated.url,
        duration=validated.duration_seconds,
        width=validated.width,
        height=validated.height,
        thumbnail_url=validated.thumbnail_url,
    )
