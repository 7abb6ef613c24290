"""Video upload storage, probing and validation."""

from bananatalk.media.probe import VideoMetadata, VideoProber
from bananatalk.media.storage import ObjectStorage, S3ObjectStorage, UploadTooLargeError
from bananatalk.media.upload import ReceivedFile, receive_file_part
from bananatalk.media.validator import MediaValidator, ValidatedVideo

__all__ = [
    "VideoMetadata",
    "VideoProber",
    "ObjectStorage",
    "S3ObjectStorage",
    "UploadTooLargeError",
    "ReceivedFile",
    "receive_file_part",
    "MediaValidator",
    "ValidatedVideo",
]
