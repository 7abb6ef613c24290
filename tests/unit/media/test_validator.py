"""Unit tests for video ingest and validation."""

import asyncio
import io
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from bananatalk.exceptions import DependencyUnavailableError, MediaValidationError
from bananatalk.media.probe import VideoProber
from bananatalk.media.validator import MediaValidator, build_blob_key, thumbnail_key_for
from tests.fakes import FakeObjectStorage, FakeProber

MIME_TYPES = ["video/mp4", "video/quicktime", "video/webm"]
CODECS = ["h264", "hevc", "vp9"]
MAX_BYTES = 50 * 1024 * 1024


@pytest.fixture
def storage():
    return FakeObjectStorage()


@pytest.fixture
def orphan_recorder():
    return AsyncMock()


@pytest.fixture
def make_validator(storage, orphan_recorder):
    def _make(prober=None, **overrides):
        return MediaValidator(
            storage=storage,
            prober=prober or FakeProber(),
            allowed_mime_types=MIME_TYPES,
            allowed_codecs=CODECS,
            max_duration_seconds=600,
            delete_backoff_seconds=0,
            orphan_recorder=orphan_recorder,
            **overrides,
        )

    return _make


async def _ingest(validator, content_type="video/mp4", body=b"\x00" * 1024, max_bytes=MAX_BYTES, filename="clip.mp4"):
    return await validator.ingest_video(
        owner_id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
        resource="stories",
        filename=filename,
        content_type=content_type,
        stream=io.BytesIO(body),
        max_bytes=max_bytes,
    )


class TestBlobKeys:
    """Tests for blob key helpers."""

    def test_key_is_namespaced_by_owner(self):
        owner = uuid.uuid4()

        key = build_blob_key("moments", owner, "../../etc/passwd.mov", "video/quicktime")

        assert key.startswith(f"media/moments/{owner}/")
        assert key.endswith(".mov")
        assert ".." not in key

    def test_unknown_extension_uses_content_type(self):
        key = build_blob_key("stories", uuid.uuid4(), "clip.exe", "video/webm")

        assert key.endswith(".webm")

    def test_thumbnail_key(self):
        assert thumbnail_key_for("media/stories/u/abc.mp4") == "media/stories/u/abc-thumb.jpg"


class TestIngestVideo:
    """Tests for MediaValidator.ingest_video."""

    async def test_accepts_valid_video(self, make_validator, storage):
        validated = await _ingest(make_validator())

        assert validated.duration_seconds == 30.0
        assert validated.size_bytes == 1024
        assert validated.codec == "h264"
        assert validated.url == f"https://cdn.example/{validated.blob_key}"
        assert validated.thumbnail_key == thumbnail_key_for(validated.blob_key)
        assert validated.thumbnail_url.endswith("-thumb.jpg")
        assert await storage.exists(validated.blob_key)
        assert storage.content_types[validated.thumbnail_key] == "image/jpeg"

    async def test_probes_stored_object(self, make_validator):
        prober = FakeProber()

        validated = await _ingest(make_validator(prober))

        assert prober.probed == [f"https://signed.example/{validated.blob_key}"]

    async def test_over_duration_is_rejected_and_deleted(self, make_validator, storage, orphan_recorder):
        """An 11-minute clip is refused with maxDuration and leaves no blob behind."""
        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(FakeProber(duration=660.0)))

        exc = exc_info.value
        assert exc.status_code == 400
        assert exc.reason == "duration"
        assert exc.to_wire()["maxDuration"] == 600
        assert exc.to_wire()["error"] == "duration exceeds 600 seconds"
        assert storage.objects == {}
        orphan_recorder.assert_not_awaited()

    async def test_zero_duration_is_rejected(self, make_validator, storage):
        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(FakeProber(duration=0.0)))

        assert exc_info.value.reason == "duration"
        assert storage.objects == {}

    async def test_disallowed_codec_is_rejected(self, make_validator, storage):
        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(FakeProber(codec="prores")))

        assert exc_info.value.reason == "codec"
        assert exc_info.value.to_wire()["codec"] == "prores"
        assert storage.objects == {}

    async def test_disallowed_mime_type_never_uploads(self, make_validator, storage):
        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(), content_type="image/gif")

        assert exc_info.value.reason == "unsupported-type"
        assert storage.objects == {}
        assert storage.delete_calls == 0

    async def test_mime_parameters_are_ignored(self, make_validator):
        validated = await _ingest(make_validator(), content_type="video/mp4; codecs=avc1")

        assert validated.mime_type == "video/mp4"

    async def test_oversized_upload_is_rejected_and_deleted(self, make_validator, storage):
        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(), body=b"\x00" * 2048, max_bytes=1024)

        assert exc_info.value.reason == "too-large"
        assert exc_info.value.to_wire()["maxBytes"] == 1024
        assert storage.objects == {}

    async def test_probe_unavailable_deletes_and_propagates(self, make_validator, storage):
        with pytest.raises(DependencyUnavailableError):
            await _ingest(make_validator(FakeProber(unavailable=True)))

        assert storage.objects == {}

    async def test_upload_failure_propagates(self, make_validator, storage):
        storage.unavailable = True

        with pytest.raises(DependencyUnavailableError):
            await _ingest(make_validator())

    async def test_thumbnail_failure_is_not_fatal(self, make_validator):
        validated = await _ingest(make_validator(FakeProber(thumbnail=None)))

        assert validated.thumbnail_key is None
        assert validated.thumbnail_url is None


class TestCompensatingDelete:
    """Tests for deleting rejected blobs."""

    async def test_transient_delete_failures_are_retried(self, make_validator, storage, orphan_recorder):
        storage.delete_failures = 2

        with pytest.raises(MediaValidationError):
            await _ingest(make_validator(FakeProber(duration=900.0)))

        assert storage.delete_calls == 3
        assert storage.objects == {}
        orphan_recorder.assert_not_awaited()

    async def test_exhausted_delete_records_orphan(self, make_validator, storage, orphan_recorder):
        storage.delete_failures = 10

        with pytest.raises(MediaValidationError) as exc_info:
            await _ingest(make_validator(FakeProber(duration=900.0), delete_attempts=3))

        assert exc_info.value.reason == "duration"
        assert storage.delete_calls == 3
        [blob_key] = list(storage.objects)
        orphan_recorder.assert_awaited_once()
        assert orphan_recorder.await_args.args[:2] == (blob_key, "duration")

    async def test_recorder_failure_does_not_mask_rejection(self, make_validator, storage, orphan_recorder):
        storage.delete_failures = 10
        orphan_recorder.side_effect = RuntimeError("db down")

        with pytest.raises(MediaValidationError):
            await _ingest(make_validator(FakeProber(codec="prores"), delete_attempts=2))


class BrokenProber(FakeProber):
    """Raises an arbitrary error from the metadata read."""

    def __init__(self, error: BaseException, **kwargs):
        super().__init__(**kwargs)
        self.error = error

    async def probe(self, url):
        self.probed.append(url)
        raise self.error


class TestUnexpectedFailures:
    """Tests that any failure after upload still removes the blob."""

    async def test_subprocess_spawn_failure_deletes_blob(self, make_validator, storage):
        spawn = AsyncMock(side_effect=OSError(24, "Too many open files"))

        with patch("asyncio.create_subprocess_exec", spawn):
            with pytest.raises(DependencyUnavailableError) as exc_info:
                await _ingest(make_validator(VideoProber()))

        assert exc_info.value.dependency == "media-probe"
        assert storage.objects == {}

    async def test_unexpected_error_is_mapped_and_blob_deleted(self, make_validator, storage):
        prober = BrokenProber(ValueError("bad metadata"))

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await _ingest(make_validator(prober))

        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert storage.objects == {}

    async def test_cancellation_deletes_blob(self, make_validator, storage):
        prober = BrokenProber(asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await _ingest(make_validator(prober))

        assert storage.objects == {}

    async def test_unexpected_upload_error_deletes_partial_blob(self, make_validator, storage):
        async def broken_upload(key, stream, content_type, max_bytes):
            storage.objects[key] = b"partial"
            raise ConnectionResetError("peer reset")

        storage.upload_stream = broken_upload

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await _ingest(make_validator())

        assert exc_info.value.dependency == "object-store"
        assert storage.objects == {}

    async def test_unexpected_delete_error_records_orphan(self, make_validator, storage, orphan_recorder):
        storage.delete = AsyncMock(side_effect=RuntimeError("socket closed"))

        with pytest.raises(MediaValidationError):
            await _ingest(make_validator(FakeProber(duration=900.0)))

        orphan_recorder.assert_awaited_once()

    async def test_any_thumbnail_error_is_not_fatal(self, make_validator, storage):
        prober = FakeProber()
        prober.extract_thumbnail = AsyncMock(side_effect=OSError(24, "Too many open files"))

        validated = await _ingest(make_validator(prober))

        assert validated.thumbnail_key is None
        assert await storage.exists(validated.blob_key)


class TestDiscardAccepted:
    """Tests for MediaValidator.discard."""

    async def test_removes_video_and_thumbnail(self, make_validator, storage):
        validator = make_validator()
        validated = await _ingest(validator)

        await validator.discard(validated, "persist-failed")

        assert storage.objects == {}

    async def test_failed_delete_records_orphans(self, make_validator, storage, orphan_recorder):
        validator = make_validator(delete_attempts=1)
        validated = await _ingest(validator)
        storage.delete_failures = 10

        await validator.discard(validated, "persist-failed")

        recorded = [call.args[:2] for call in orphan_recorder.await_args_list]
        assert recorded == [
            (validated.blob_key, "persist-failed"),
            (validated.thumbnail_key, "persist-failed"),
        ]
