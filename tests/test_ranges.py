from __future__ import annotations

import io
from pathlib import Path
from typing import List

import pytest

from mediashare.services.ranges import (
    ByteRange,
    RangeNotSatisfiableError,
    RangeParseError,
    negotiate,
    parse_range_header,
)
from mediashare.services.resolver import FileByteSource


class TrackingSource:
    """Byte source over an in-memory buffer that records every handle it opens."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.handles: List[io.BytesIO] = []

    def open(self) -> io.BytesIO:
        handle = io.BytesIO(self.data)
        self.handles.append(handle)
        return handle


class FailingSource:
    def open(self):
        raise PermissionError("denied")


@pytest.mark.parametrize(
    ("start", "end", "total"),
    [(0, 0, 1), (0, 99, 100), (10, 19, 100), (99, 99, 100), (5, 70000, 200000)],
)
def test_range_returns_exact_span(start: int, end: int, total: int) -> None:
    data = bytes(index % 251 for index in range(total))
    source = TrackingSource(data)

    envelope = negotiate(source, total, "application/octet-stream", f"bytes={start}-{end}")

    assert envelope.status == 206
    assert envelope.headers["Content-Range"] == f"bytes {start}-{end}/{total}"
    assert envelope.headers["Content-Length"] == str(end - start + 1)
    assert envelope.headers["Accept-Ranges"] == "bytes"
    assert envelope.read_all() == data[start : end + 1]
    assert source.handles[0].closed


def test_unranged_video_returns_first_chunk() -> None:
    total = 3 * 1024 * 1024
    source = TrackingSource(b"v" * total)

    envelope = negotiate(source, total, "video/mp4", None)

    assert envelope.status == 206
    assert envelope.headers["Content-Range"] == f"bytes 0-{1024 * 1024 - 1}/{total}"
    assert len(envelope.read_all()) == 1024 * 1024


def test_unranged_small_video_returns_whole_file_as_partial() -> None:
    source = TrackingSource(b"tiny")

    envelope = negotiate(source, 4, "video/mp4", None)

    assert envelope.status == 206
    assert envelope.headers["Content-Range"] == "bytes 0-3/4"
    assert envelope.read_all() == b"tiny"


def test_unranged_non_video_returns_full_body() -> None:
    source = TrackingSource(b"hello world")

    envelope = negotiate(source, 11, "text/plain", None)

    assert envelope.status == 200
    assert "Content-Range" not in envelope.headers
    assert envelope.headers["Content-Length"] == "11"
    assert envelope.headers["Content-Type"] == "text/plain"
    assert envelope.read_all() == b"hello world"


def test_empty_resource_without_range_is_ok() -> None:
    envelope = negotiate(TrackingSource(b""), 0, "video/mp4", None)

    assert envelope.status == 200
    assert envelope.headers["Content-Length"] == "0"
    assert envelope.read_all() == b""


def test_open_ended_range_reads_to_end() -> None:
    data = b"0123456789"
    envelope = negotiate(TrackingSource(data), len(data), "image/png", "bytes=0-")

    assert envelope.status == 206
    assert envelope.headers["Content-Range"] == "bytes 0-9/10"
    assert envelope.read_all() == data


def test_end_beyond_file_is_clamped() -> None:
    envelope = negotiate(TrackingSource(b"abcdef"), 6, "image/png", "bytes=2-500")

    assert envelope.headers["Content-Range"] == "bytes 2-5/6"
    assert envelope.read_all() == b"cdef"


@pytest.mark.parametrize(
    "header",
    ["bytes=abc-xyz", "bytes=-500", "bytes=5-2", "items=0-5", "bytes=1-x", "garbage"],
)
def test_malformed_range_is_rejected_without_opening(header: str) -> None:
    source = TrackingSource(b"0123456789")

    envelope = negotiate(source, 10, "video/mp4", header)

    assert envelope.status == 400
    assert envelope.read_all() == b""
    assert source.handles == []


def test_start_beyond_end_is_not_satisfiable() -> None:
    source = TrackingSource(b"0123456789")

    envelope = negotiate(source, 10, "video/mp4", "bytes=10-20")

    assert envelope.status == 416
    assert envelope.headers["Content-Range"] == "bytes */10"
    assert source.handles == []


def test_only_first_range_is_honoured() -> None:
    envelope = negotiate(TrackingSource(b"0123456789"), 10, "text/plain", "bytes=1-2, 5-6")

    assert envelope.headers["Content-Range"] == "bytes 1-2/10"
    assert envelope.read_all() == b"12"


def test_open_failure_maps_to_server_error() -> None:
    envelope = negotiate(FailingSource(), 10, "video/mp4", "bytes=0-1")

    assert envelope.status == 500
    assert envelope.read_all() == b""


def test_closing_unread_body_releases_handle() -> None:
    source = TrackingSource(b"x" * 200000)

    envelope = negotiate(source, 200000, "application/octet-stream", "bytes=0-")
    envelope.close()

    assert source.handles[0].closed


def test_file_byte_source_reads_from_disk(tmp_path: Path) -> None:
    target = tmp_path / "clip.bin"
    target.write_bytes(b"abcdefghij")

    envelope = negotiate(FileByteSource(target), 10, "video/mp4", "bytes=3-5")

    assert envelope.read_all() == b"def"


def test_parse_range_header_errors() -> None:
    with pytest.raises(RangeParseError):
        parse_range_header("bytes=-5", 10)
    with pytest.raises(RangeNotSatisfiableError):
        parse_range_header("bytes=12-", 10)
    assert parse_range_header("bytes = 2 - 4", 10) == ByteRange(2, 4, 10)


def test_byte_range_rejects_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        ByteRange(start=5, end=4, total=10)
    with pytest.raises(ValueError):
        ByteRange(start=0, end=10, total=10)
