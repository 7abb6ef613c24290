"""S3-compatible object storage (DigitalOcean Spaces, AWS S3, MinIO)."""

import asyncio
from typing import BinaryIO, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bananatalk.exceptions import DependencyUnavailableError
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class UploadTooLargeError(Exception):
    """The streamed body crossed the byte cap."""

    def __init__(self, max_bytes: int):
        super().__init__(f"upload exceeds {max_bytes} bytes")
        self.max_bytes = max_bytes


class ObjectStorage(Protocol):
    async def upload_stream(
        self, key: str, stream: BinaryIO, content_type: str, max_bytes: int
    ) -> int: ...

    async def upload_bytes(self, key: str, data: bytes, content_type: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def presigned_url(self, key: str) -> str: ...

    def public_url(self, key: str) -> str: ...


class _LimitedReader:
    """File-like wrapper counting bytes read and failing past ``max_bytes``.

    Exposes only ``read`` so the transfer manager treats it as non-seekable
    and pulls it chunk by chunk.
    """

    def __init__(self, stream: BinaryIO, max_bytes: int):
        self._stream = stream
        self._max_bytes = max_bytes
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.bytes_read += len(chunk)
        if self.bytes_read > self._max_bytes:
            raise UploadTooLargeError(self._max_bytes)
        return chunk


class S3ObjectStorage:
    """boto3-backed storage; blocking calls run on worker threads."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
        presign_ttl_seconds: int = 900,
    ):
        self._bucket = bucket_name
        self._region = region
        self._endpoint_url = endpoint_url
        self._public_base_url = public_base_url
        self._presign_ttl_seconds = presign_ttl_seconds

        kwargs: dict = {
            "config": Config(
                region_name=region,
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if access_key_id and secret_access_key:
            kwargs["aws_access_key_id"] = access_key_id
            kwargs["aws_secret_access_key"] = secret_access_key
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        self._client = boto3.client("s3", **kwargs)

    async def upload_stream(
        self, key: str, stream: BinaryIO, content_type: str, max_bytes: int
    ) -> int:
        """Stream ``stream`` to ``key``; returns the number of bytes stored.

        Raises:
            UploadTooLargeError: The body is larger than ``max_bytes``.
        """
        reader = _LimitedReader(stream, max_bytes)
        try:
            await asyncio.to_thread(
                self._client.upload_fileobj,
                reader,
                self._bucket,
                key,
                ExtraArgs={"ContentType": content_type, "ACL": "public-read"},
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable(e, "upload", key) from e
        log.info("object uploaded", key=key, size_bytes=reader.bytes_read)
        return reader.bytes_read

    async def upload_bytes(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable(e, "put", key) from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable(e, "delete", key) from e
        log.info("object deleted", key=key)

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in _NOT_FOUND_CODES:
                return False
            raise self._unavailable(e, "head", key) from e
        except BotoCoreError as e:
            raise self._unavailable(e, "head", key) from e
        return True

    async def presigned_url(self, key: str) -> str:
        """Short-lived GET URL the probe tools read the stored object through."""
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._presign_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable(e, "presign", key) from e

    def public_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def _unavailable(self, error: Exception, operation: str, key: str) -> DependencyUnavailableError:
        log.error(
            "object store operation failed",
            operation=operation,
            key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
        return DependencyUnavailableError(
            "object-store", "Media storage is temporarily unavailable. Please try again later."
        )
