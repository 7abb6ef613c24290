"""ffprobe/ffmpeg wrappers reading the stored object, never the client payload."""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

from bananatalk.exceptions import DependencyUnavailableError, MediaValidationError
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class VideoMetadata:
    duration_seconds: float
    width: Optional[int]
    height: Optional[int]
    codec: Optional[str]
    format_name: Optional[str] = None


def parse_probe_output(raw: bytes | str) -> VideoMetadata:
    """Extract duration, dimensions and codec from ``ffprobe -print_format json`` output."""
    try:
        data: dict[str, Any] = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MediaValidationError("Could not read video metadata", reason="unreadable") from e

    video = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if video is None:
        raise MediaValidationError("No video stream found", reason="no-video-stream")

    fmt = data.get("format", {})
    # Container duration first; some muxers only set it on the stream
    raw_duration = fmt.get("duration") or video.get("duration")
    try:
        duration = float(raw_duration) if raw_duration is not None else 0.0
    except (TypeError, ValueError):
        duration = 0.0

    return VideoMetadata(
        duration_seconds=duration,
        width=video.get("width"),
        height=video.get("height"),
        codec=video.get("codec_name"),
        format_name=fmt.get("format_name"),
    )


class VideoProber:
    """Runs the probe tools as subprocesses under a timeout."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        ffmpeg_path: str = "ffmpeg",
        timeout_seconds: float = 60.0,
    ):
        self.ffprobe_path = ffprobe_path
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    async def _run(self, *args: str) -> tuple[int, bytes, bytes]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.error("probe tool could not start", tool=args[0], error=str(e), errno=e.errno)
            raise DependencyUnavailableError(
                "media-probe", "Video processing is temporarily unavailable. Please try again later."
            ) from e

        try:
            async with asyncio.timeout(self.timeout_seconds):
                stdout, stderr = await proc.communicate()
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            log.error("probe tool timed out", tool=args[0], timeout_seconds=self.timeout_seconds)
            raise DependencyUnavailableError(
                "media-probe", "Video processing timed out. Please try again later."
            ) from e
        return proc.returncode or 0, stdout, stderr

    async def probe(self, url: str) -> VideoMetadata:
        """Probe a stored object reachable at ``url``."""
        returncode, stdout, stderr = await self._run(
            self.ffprobe_path,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            url,
        )
        if returncode != 0:
            log.warning(
                "ffprobe failed",
                returncode=returncode,
                stderr=stderr.decode(errors="replace")[:500],
            )
            raise MediaValidationError("Could not read video metadata", reason="unreadable")

        metadata = parse_probe_output(stdout)
        log.debug(
            "video probed",
            duration_seconds=metadata.duration_seconds,
            width=metadata.width,
            height=metadata.height,
            codec=metadata.codec,
        )
        return metadata

    async def extract_thumbnail(self, url: str, at_seconds: float = 1.0, width: int = 480) -> bytes:
        """Grab a single JPEG frame near ``at_seconds``, scaled to ``width`` pixels wide."""
        returncode, stdout, stderr = await self._run(
            self.ffmpeg_path,
            "-v",
            "error",
            "-ss",
            f"{at_seconds:g}",
            "-i",
            url,
            "-frames:v",
            "1",
            "-vf",
            f"scale={width}:-2",
            "-f",
            "image2pipe",
            "-vcodec",
            "mjpeg",
            "pipe:1",
        )
        if returncode != 0 or not stdout:
            log.warning(
                "thumbnail extraction failed",
                returncode=returncode,
                stderr=stderr.decode(errors="replace")[:500],
            )
            raise MediaValidationError("Could not extract thumbnail", reason="thumbnail")
        return stdout
