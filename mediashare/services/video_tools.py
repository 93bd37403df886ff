"""Thin wrappers around the FFmpeg command-line tools."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence


LOGGER = logging.getLogger(__name__)

_PROBE_TIMEOUT_SECONDS = 30.0


class VideoToolError(RuntimeError):
    """Raised when an FFmpeg tool cannot be run or exits unsuccessfully."""


@dataclass(frozen=True)
class VideoStreamInfo:
    """Codec and geometry of the primary video stream."""

    codec_name: str
    codec_tag: str
    width: int
    height: int


def ffmpeg_available(binary: str = "ffmpeg") -> bool:
    """Return ``True`` when *binary* can be found on ``PATH``."""

    return shutil.which(binary) is not None


def _resolve_binary(binary: str) -> str:
    resolved = shutil.which(binary)
    if resolved is None:
        raise VideoToolError(f"'{binary}' was not found; install FFmpeg to enable transcoding.")
    return resolved


def _run(command: Sequence[str], *, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    LOGGER.debug("Executing command: %s", " ".join(command))
    try:
        completed = subprocess.run(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as error:
        raise VideoToolError(f"Could not run {Path(command[0]).name}: {error}") from error

    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="ignore").strip()
        stdout = completed.stdout.decode("utf-8", errors="ignore").strip()
        details = (stderr or stdout or "exited with a non-zero status.").splitlines()
        LOGGER.debug(
            "%s failed (code=%s). stderr=%s stdout=%s",
            Path(command[0]).name,
            completed.returncode,
            stderr,
            stdout,
        )
        raise VideoToolError(
            f"{Path(command[0]).name} failed: {details[-1] if details else 'Unknown error.'}"
        )
    return completed


def probe_video_stream(source: Path, *, ffprobe: str = "ffprobe") -> VideoStreamInfo:
    """Return codec details of the first video stream of *source*."""

    command = [
        _resolve_binary(ffprobe),
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=codec_name,codec_tag_string,width,height",
        "-of",
        "json",
        str(source),
    ]
    completed = _run(command, timeout=_PROBE_TIMEOUT_SECONDS)
    try:
        payload = json.loads(completed.stdout.decode("utf-8", errors="ignore") or "{}")
    except json.JSONDecodeError as error:
        raise VideoToolError(f"ffprobe returned unreadable output for {source}") from error

    streams = payload.get("streams") if isinstance(payload, dict) else None
    if not streams:
        raise VideoToolError(f"No video track found in {source}")
    stream = streams[0]
    try:
        width = int(stream.get("width") or 0)
        height = int(stream.get("height") or 0)
    except (TypeError, ValueError):
        width = height = 0
    return VideoStreamInfo(
        codec_name=str(stream.get("codec_name") or "").lower(),
        codec_tag=str(stream.get("codec_tag_string") or "").lower(),
        width=width,
        height=height,
    )


def _partial_path(destination: Path) -> Path:
    return destination.with_name(f".{destination.stem}.{uuid.uuid4().hex[:8]}.partial{destination.suffix}")


def transcode_to_h264(
    source: Path,
    destination: Path,
    *,
    max_width: int,
    max_height: int,
    ffmpeg: str = "ffmpeg",
) -> Path:
    """Re-encode *source* as H.264/AAC MP4 bounded by ``max_width`` x ``max_height``.

    Output is written to a temporary sibling and moved into place only on
    success, so *destination* never holds a partial file.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = _partial_path(destination)
    scale = (
        f"scale={max_width}:{max_height}:force_original_aspect_ratio=decrease,"
        "scale=trunc(iw/2)*2:trunc(ih/2)*2"
    )
    command: List[str] = [
        _resolve_binary(ffmpeg),
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(source),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0?",
        "-vf",
        scale,
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-profile:v",
        "high",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        "160k",
        "-movflags",
        "+faststart",
        "-f",
        "mp4",
        str(partial),
    ]
    try:
        _run(command)
        os.replace(partial, destination)
    except (VideoToolError, OSError):
        partial.unlink(missing_ok=True)
        raise
    LOGGER.debug("Transcode succeeded; output stored at %s", destination)
    return destination


def extract_poster_frame(
    source: Path,
    destination: Path,
    *,
    max_dimension: int = 640,
    ffmpeg: str = "ffmpeg",
) -> Path:
    """Write a JPEG still taken shortly after the start of *source*."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = _partial_path(destination)
    command = [
        _resolve_binary(ffmpeg),
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-ss",
        "0.1",
        "-i",
        str(source),
        "-frames:v",
        "1",
        "-vf",
        f"scale={max_dimension}:{max_dimension}:force_original_aspect_ratio=decrease",
        "-q:v",
        "5",
        "-f",
        "image2",
        str(partial),
    ]
    try:
        _run(command, timeout=_PROBE_TIMEOUT_SECONDS)
        os.replace(partial, destination)
    except (VideoToolError, OSError):
        partial.unlink(missing_ok=True)
        raise
    return destination


__all__ = [
    "VideoStreamInfo",
    "VideoToolError",
    "extract_poster_frame",
    "ffmpeg_available",
    "probe_video_stream",
    "transcode_to_h264",
]
