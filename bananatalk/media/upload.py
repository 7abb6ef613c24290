"""Streaming reader for multipart video uploads.

The request body is parsed as it arrives and only the named file part is
kept. Reading stops as soon as that part passes the byte cap, so an
oversized upload is refused without receiving the rest of it.
"""

import asyncio
from dataclasses import dataclass
from tempfile import SpooledTemporaryFile
from typing import AsyncIterator, Mapping, Optional

from python_multipart import MultipartParser
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import parse_options_header

from bananatalk.exceptions import MediaValidationError
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)

SPOOL_MAX_BYTES = 1024 * 1024

# Boundaries and part headers allowed on top of the file itself
MULTIPART_OVERHEAD_BYTES = 16 * 1024


def upload_too_large(max_bytes: int) -> MediaValidationError:
    max_mb = max_bytes // (1024 * 1024)
    return MediaValidationError(
        f"Video exceeds the {max_mb} MB upload limit",
        reason="too-large",
        maxBytes=max_bytes,
    )


def _invalid_form(message: str) -> MediaValidationError:
    return MediaValidationError(message, reason="invalid-form")


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


@dataclass
class ReceivedFile:
    """A file part spooled to memory, or to disk past ``SPOOL_MAX_BYTES``."""

    file: SpooledTemporaryFile
    filename: Optional[str]
    content_type: Optional[str]
    size_bytes: int

    def close(self) -> None:
        self.file.close()


class _FilePartReader:
    """python-multipart callbacks that keep one named file part."""

    def __init__(self, field_name: str, max_bytes: int):
        self.field_name = field_name
        self.max_bytes = max_bytes
        self.file: Optional[SpooledTemporaryFile] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self.size_bytes = 0
        self.complete = False
        self.pending: list[bytes] = []
        self._capturing = False
        self._headers: dict[bytes, bytes] = {}
        self._header_name = b""
        self._header_value = b""

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
        }

    def on_part_begin(self) -> None:
        self._headers = {}
        self._capturing = False

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_name.lower()] = self._header_value
        self._header_name = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name")
        if name is None or _decode(name) != self.field_name or self.file is not None:
            return
        self._capturing = True
        self.file = SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
        filename = options.get(b"filename")
        self.filename = _decode(filename) if filename is not None else None
        content_type = self._headers.get(b"content-type")
        self.content_type = _decode(content_type).strip() if content_type else None

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if not self._capturing:
            return
        self.size_bytes += end - start
        if self.size_bytes > self.max_bytes:
            raise upload_too_large(self.max_bytes)
        self.pending.append(data[start:end])

    def on_part_end(self) -> None:
        if self._capturing:
            self._capturing = False
            self.complete = True


async def receive_file_part(
    headers: Mapping[str, str],
    stream: AsyncIterator[bytes],
    field_name: str,
    max_bytes: int,
) -> ReceivedFile:
    """Read ``field_name`` from a ``multipart/form-data`` body.

    The caller owns the returned file and must close it.

    Raises:
        MediaValidationError: The body is not a multipart form, the part is
            missing, or the part exceeds ``max_bytes`` (``reason="too-large"``).
    """
    content_length = headers.get("content-length")
    if content_length and content_length.isdigit():
        if int(content_length) > max_bytes + MULTIPART_OVERHEAD_BYTES:
            log.info("upload refused by content-length", content_length=int(content_length), max_bytes=max_bytes)
            raise upload_too_large(max_bytes)

    content_type, params = parse_options_header(headers.get("content-type", ""))
    if content_type != b"multipart/form-data" or b"boundary" not in params:
        raise _invalid_form("Expected a multipart/form-data body")

    reader = _FilePartReader(field_name, max_bytes)
    parser = MultipartParser(params[b"boundary"], reader.callbacks())
    try:
        async for chunk in stream:
            parser.write(chunk)
            if reader.pending and reader.file is not None:
                data = b"".join(reader.pending)
                reader.pending.clear()
                await asyncio.to_thread(reader.file.write, data)
        parser.finalize()
    except FormParserError as e:
        if reader.file is not None:
            reader.file.close()
        raise _invalid_form("Malformed multipart body") from e
    except BaseException:
        if reader.file is not None:
            reader.file.close()
        raise

    if reader.file is None or not reader.complete:
        if reader.file is not None:
            reader.file.close()
        raise MediaValidationError(f"Missing file field '{field_name}'", reason="missing-file")

    reader.file.seek(0)
    log.debug(
        "upload received",
        field=field_name,
        filename=reader.filename,
        size_bytes=reader.size_bytes,
    )
    return ReceivedFile(
        file=reader.file,
        filename=reader.filename,
        content_type=reader.content_type,
        size_bytes=reader.size_bytes,
    )
