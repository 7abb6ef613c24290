"""Media upload schemas."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UploadResource(StrEnum):
    STORIES = "stories"
    MOMENTS = "moments"


class VideoUploadResponse(BaseModel):
    """Response for PUT /{resource}/{id}/video."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    duration: float
    width: int | None = None
    height: int | None = None
    thumbnail_url: str | None = None
