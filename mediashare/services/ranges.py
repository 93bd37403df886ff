"""HTTP byte-range negotiation for shared resources."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Iterable, Iterator, Optional

from .resolver import ByteSource


LOGGER = logging.getLogger(__name__)

DEFAULT_VIDEO_CHUNK_BYTES = 1024 * 1024
STREAM_BLOCK_SIZE = 64 * 1024

_RANGE_PATTERN = re.compile(r"^\s*bytes\s*=\s*(?P<start>[^-,]*)-(?P<end>[^,]*)")


class RangeParseError(ValueError):
    """Raised for Range headers that cannot be interpreted."""


class RangeNotSatisfiableError(ValueError):
    """Raised when the requested start lies beyond the end of the resource."""


@dataclass(frozen=True)
class ByteRange:
    """Inclusive, zero-indexed byte span of a resource of ``total`` bytes."""

    start: int
    end: int
    total: int

    def __post_init__(self) -> None:
        if not 0 <= self.start <= self.end < self.total:
            raise ValueError(f"Invalid byte range {self.start}-{self.end}/{self.total}")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"


def parse_range_header(header: str, total: int) -> ByteRange:
    """Parse a ``bytes=start-end`` header against a resource of *total* bytes.

    Only the first range of a multi-range header is honoured. A missing end
    means "to the end of the resource" and an end past the resource is
    clamped. A missing start (suffix ranges) is treated as malformed.
    """

    match = _RANGE_PATTERN.match(header or "")
    if match is None:
        raise RangeParseError(f"Unsupported Range header: {header!r}")

    raw_start = match.group("start").strip()
    raw_end = match.group("end").strip()
    if not raw_start.isdigit():
        raise RangeParseError(f"Range header has no numeric start: {header!r}")
    if raw_end and not raw_end.isdigit():
        raise RangeParseError(f"Range header has a non-numeric end: {header!r}")

    start = int(raw_start)
    if start >= total:
        raise RangeNotSatisfiableError(f"Range start {start} is beyond {total} bytes")

    end = int(raw_end) if raw_end else total - 1
    if end < start:
        raise RangeParseError(f"Range end precedes start: {header!r}")
    end = min(end, total - 1)
    return ByteRange(start=start, end=end, total=total)


@dataclass
class ResponseEnvelope:
    """Status, headers and a chunked body ready to hand to the HTTP layer."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Iterable[bytes] = ()

    def read_all(self) -> bytes:
        return b"".join(self.body)

    def close(self) -> None:
        closer = getattr(self.body, "close", None)
        if callable(closer):
            closer()


def _error(status: int, headers: Optional[Dict[str, str]] = None) -> ResponseEnvelope:
    return ResponseEnvelope(status=status, headers=dict(headers or {}), body=())


class SpanReader:
    """Iterable over a byte span of an open handle; owns and closes the handle."""

    def __init__(self, handle: BinaryIO, first: bytes, remaining: int) -> None:
        self._handle = handle
        self._first = first
        self._remaining = remaining
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[bytes]:
        try:
            if self._first:
                first, self._first = self._first, b""
                yield first
            while self._remaining > 0 and not self._closed:
                block = self._handle.read(min(STREAM_BLOCK_SIZE, self._remaining))
                if not block:
                    LOGGER.warning(
                        "Resource ended %s bytes early while streaming", self._remaining
                    )
                    return
                self._remaining -= len(block)
                yield block
        finally:
            self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._handle.close()


def _read_span(source: ByteSource, start: int, length: int) -> SpanReader:
    """Open *source*, seek to *start* and return a reader over *length* bytes.

    The first block is read eagerly so open/seek/read failures surface before
    any header is sent.
    """

    handle = source.open()
    try:
        if start:
            handle.seek(start)
        first = handle.read(min(STREAM_BLOCK_SIZE, length)) if length else b""
    except BaseException:
        handle.close()
        raise
    return SpanReader(handle, first, length - len(first))


def negotiate(
    source: ByteSource,
    total: int,
    mime_type: str,
    range_header: Optional[str],
    *,
    is_video: Optional[bool] = None,
    video_chunk_bytes: int = DEFAULT_VIDEO_CHUNK_BYTES,
) -> ResponseEnvelope:
    """Produce the response envelope for reading *source* under *range_header*."""

    if is_video is None:
        is_video = mime_type.startswith("video/")

    base_headers = {"Content-Type": mime_type, "Accept-Ranges": "bytes"}

    if range_header:
        try:
            byte_range = parse_range_header(range_header, total)
        except RangeNotSatisfiableError:
            return _error(416, {"Content-Range": f"bytes */{total}", "Accept-Ranges": "bytes"})
        except RangeParseError as error:
            LOGGER.debug("Rejecting malformed range: %s", error)
            return _error(400)
        status = 206
    elif is_video and total > 0:
        chunk = min(video_chunk_bytes, total)
        byte_range = ByteRange(start=0, end=chunk - 1, total=total)
        status = 206
    else:
        byte_range = None
        status = 200

    start = byte_range.start if byte_range else 0
    length = byte_range.length if byte_range else total
    try:
        body = _read_span(source, start, length)
    except OSError as error:
        LOGGER.error("Failed to read %s bytes at offset %s: %s", length, start, error)
        return _error(500)

    headers = dict(base_headers)
    if byte_range is not None:
        headers["Content-Range"] = byte_range.content_range()
    headers["Content-Length"] = str(length)
    return ResponseEnvelope(status=status, headers=headers, body=body)


__all__ = [
    "ByteRange",
    "DEFAULT_VIDEO_CHUNK_BYTES",
    "RangeNotSatisfiableError",
    "RangeParseError",
    "ResponseEnvelope",
    "SpanReader",
    "negotiate",
    "parse_range_header",
]
