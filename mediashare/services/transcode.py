"""On-demand HEVC to H.264 transcoding with per-source deduplication.

Every video source key moves through a small state machine::

    Unchecked -> Probing -> PassThrough
                         -> NeedsTranscode -> Transcoding -> Ready | Failed

Only ``Ready`` redirects reads to the cached output; every other terminal
state reads the original file. The entry map is guarded by a single lock and
a key is probed and transcoded at most once: concurrent requests for the same
key wait on the entry created by the first request. The probe and the
transcode themselves run outside the lock in the event loop's executor, so
different keys are processed in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Protocol, Set, Tuple

from .events import emit_task_event
from .naming import build_cache_name
from .video_tools import (
    VideoStreamInfo,
    VideoToolError,
    probe_video_stream,
    transcode_to_h264,
)


LOGGER = logging.getLogger(__name__)

TRANSCODED_MIME_TYPE = "video/mp4"

HEVC_CODEC_NAMES: FrozenSet[str] = frozenset({"hevc", "h265"})
HEVC_CODEC_TAGS: FrozenSet[str] = frozenset({"hvc1", "hev1", "dvh1", "dvhe"})


class TranscodeState(str, Enum):
    UNCHECKED = "Unchecked"
    PROBING = "Probing"
    PASS_THROUGH = "PassThrough"
    NEEDS_TRANSCODE = "NeedsTranscode"
    TRANSCODING = "Transcoding"
    READY = "Ready"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


_TERMINAL_STATES: FrozenSet[TranscodeState] = frozenset(
    {
        TranscodeState.PASS_THROUGH,
        TranscodeState.READY,
        TranscodeState.FAILED,
        TranscodeState.UNKNOWN,
    }
)


class ProbeError(RuntimeError):
    """Raised when the tracks of a video cannot be inspected."""


class TranscodeError(RuntimeError):
    """Raised when a transcode job does not produce an output file."""


@dataclass(frozen=True)
class TranscodePreset:
    name: str
    max_width: int
    max_height: int


PRESET_1080P = TranscodePreset("1080p", 1920, 1080)
PRESET_720P = TranscodePreset("720p", 1280, 720)
PRESET_540P = TranscodePreset("540p", 960, 540)
PRESET_480P = TranscodePreset("480p", 640, 480)

PRESET_LADDER: Tuple[Tuple[int, TranscodePreset], ...] = (
    (1920, PRESET_1080P),
    (1280, PRESET_720P),
    (960, PRESET_540P),
)


def select_preset(width: int, height: int) -> TranscodePreset:
    """Pick the output preset from the larger of *width* and *height*."""

    largest = max(width, height)
    for threshold, preset in PRESET_LADDER:
        if largest >= threshold:
            return preset
    return PRESET_480P


def needs_transcode(stream: VideoStreamInfo) -> bool:
    """Return ``True`` for HEVC-family video tracks."""

    return stream.codec_name in HEVC_CODEC_NAMES or stream.codec_tag in HEVC_CODEC_TAGS


class VideoProber(Protocol):
    def probe(self, source: Path) -> VideoStreamInfo:
        ...


class VideoTranscoder(Protocol):
    def transcode(self, source: Path, destination: Path, preset: TranscodePreset) -> None:
        ...


class FFprobeVideoProber:
    """Inspect video tracks with ``ffprobe``."""

    def __init__(self, binary: str = "ffprobe") -> None:
        self._binary = binary

    def probe(self, source: Path) -> VideoStreamInfo:
        try:
            return probe_video_stream(source, ffprobe=self._binary)
        except VideoToolError as error:
            raise ProbeError(str(error)) from error


class FFmpegVideoTranscoder:
    """Export H.264/AAC MP4 files with ``ffmpeg``."""

    def __init__(self, binary: str = "ffmpeg") -> None:
        self._binary = binary

    def transcode(self, source: Path, destination: Path, preset: TranscodePreset) -> None:
        try:
            transcode_to_h264(
                source,
                destination,
                max_width=preset.max_width,
                max_height=preset.max_height,
                ffmpeg=self._binary,
            )
        except (VideoToolError, OSError) as error:
            raise TranscodeError(str(error)) from error


@dataclass
class TranscodeCacheEntry:
    """Mutable state of one source key; ``output_path`` is set only when ``Ready``."""

    source_key: str
    state: TranscodeState = TranscodeState.UNCHECKED
    output_path: Optional[Path] = None
    preset: Optional[TranscodePreset] = None
    error: Optional[str] = None
    evicted: bool = False
    completion: "Future[TranscodeOutcome]" = field(default_factory=Future, repr=False)

    @property
    def settled(self) -> bool:
        return self.state in _TERMINAL_STATES


@dataclass(frozen=True)
class TranscodeOutcome:
    """Which file a request should read for a video source."""

    path: Path
    state: TranscodeState

    @property
    def transcoded(self) -> bool:
        return self.state is TranscodeState.READY

    @property
    def compatibility_unknown(self) -> bool:
        return self.state is TranscodeState.UNKNOWN


class TranscodeCoordinator:
    """Own the transcode cache and make sure each source is processed once."""

    def __init__(
        self,
        output_root: Path,
        *,
        prober: Optional[VideoProber] = None,
        transcoder: Optional[VideoTranscoder] = None,
        report_unknown_compatibility: bool = False,
    ) -> None:
        self._output_root = output_root
        self._prober: VideoProber = prober or FFprobeVideoProber()
        self._transcoder: VideoTranscoder = transcoder or FFmpegVideoTranscoder()
        self._report_unknown = report_unknown_compatibility
        self._entries: Dict[str, TranscodeCacheEntry] = {}
        # In-flight entries dropped by clear(); their output is discarded on settle.
        self._evicted: Dict[str, TranscodeCacheEntry] = {}
        self._lock = threading.Lock()
        self._jobs: Set[asyncio.Task] = set()

    @property
    def output_root(self) -> Path:
        return self._output_root

    def output_path_for(self, source_key: str) -> Path:
        return self._output_root / build_cache_name("transcoded", source_key, extension=".mp4")

    def state_of(self, source: Path | str) -> TranscodeState:
        with self._lock:
            entry = self._entries.get(str(source))
            return entry.state if entry is not None else TranscodeState.UNCHECKED

    def snapshot(self) -> Dict[str, TranscodeState]:
        with self._lock:
            return {key: entry.state for key, entry in self._entries.items()}

    async def resolve(self, source: Path) -> TranscodeOutcome:
        """Return the file to read for *source*, transcoding it first when needed."""

        key = str(source)
        with self._lock:
            entry = self._entries.get(key)
            if (
                entry is not None
                and entry.state is TranscodeState.READY
                and (entry.output_path is None or not entry.output_path.exists())
            ):
                LOGGER.info("Cached transcode for %s disappeared; transcoding again", key)
                entry = None
            if entry is None and key in self._evicted:
                entry = self._evicted.pop(key)
                entry.evicted = False
                self._entries[key] = entry
                LOGGER.debug("Reclaimed in-flight entry for %s after a cache clear", key)
            owner = entry is None
            if entry is None:
                entry = TranscodeCacheEntry(source_key=key, state=TranscodeState.PROBING)
                self._entries[key] = entry

        if owner:
            job = asyncio.ensure_future(self._drive(entry, source))
            self._jobs.add(job)
            job.add_done_callback(self._jobs.discard)
        else:
            LOGGER.debug("Awaiting in-flight entry for %s (state=%s)", key, entry.state.value)

        # Shielded so that one disconnecting client never cancels the shared result.
        return await asyncio.shield(asyncio.wrap_future(entry.completion))

    def _transition(self, entry: TranscodeCacheEntry, state: TranscodeState) -> None:
        with self._lock:
            entry.state = state

    def _settle(
        self,
        entry: TranscodeCacheEntry,
        state: TranscodeState,
        path: Path,
        *,
        error: Optional[str] = None,
        fallback: Optional[Path] = None,
    ) -> None:
        discard: Optional[Path] = None
        with self._lock:
            if entry.evicted:
                # Nobody re-requested the source after clear(); never publish its output.
                if self._evicted.get(entry.source_key) is entry:
                    del self._evicted[entry.source_key]
                discard = self.output_path_for(entry.source_key)
                if state is TranscodeState.READY:
                    state = TranscodeState.FAILED
                    path = fallback if fallback is not None else path
                    error = "Transcode cache was cleared"
            entry.state = state
            entry.error = error
            entry.output_path = path if state is TranscodeState.READY else None
        if discard is not None:
            self._discard_output(discard)
        if not entry.completion.done():
            entry.completion.set_result(TranscodeOutcome(path=path, state=state))

    async def _drive(self, entry: TranscodeCacheEntry, source: Path) -> None:
        loop = asyncio.get_running_loop()
        key = entry.source_key
        try:
            try:
                stream = await loop.run_in_executor(None, self._prober.probe, source)
            except ProbeError as error:
                state = (
                    TranscodeState.UNKNOWN if self._report_unknown else TranscodeState.PASS_THROUGH
                )
                LOGGER.warning("Could not probe %s (%s); serving original", key, error)
                self._settle(entry, state, source, error=str(error))
                return

            if not needs_transcode(stream):
                LOGGER.debug("%s uses %s; serving original", key, stream.codec_name or "unknown")
                self._settle(entry, TranscodeState.PASS_THROUGH, source)
                return

            preset = select_preset(stream.width, stream.height)
            destination = self.output_path_for(key)
            with self._lock:
                entry.state = TranscodeState.NEEDS_TRANSCODE
                entry.preset = preset
            self._transition(entry, TranscodeState.TRANSCODING)
            emit_task_event(
                "transcoding",
                "Transcoding HEVC video",
                payload={"source": key, "preset": preset.name},
            )
            started = time.perf_counter()
            try:
                await loop.run_in_executor(
                    None, self._transcoder.transcode, source, destination, preset
                )
            except TranscodeError as error:
                LOGGER.error("Transcoding %s failed: %s", key, error)
                self._settle(entry, TranscodeState.FAILED, source, error=str(error))
                return

            if not destination.exists():
                self._settle(
                    entry, TranscodeState.FAILED, source, error="Transcoder produced no output"
                )
                return
            emit_task_event(
                "ready",
                "Transcode ready",
                payload={"source": key, "output": destination},
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
            self._settle(entry, TranscodeState.READY, destination, fallback=source)
        except asyncio.CancelledError:
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
                if self._evicted.get(key) is entry:
                    del self._evicted[key]
            if not entry.completion.done():
                entry.completion.set_result(
                    TranscodeOutcome(path=source, state=TranscodeState.FAILED)
                )
            raise
        except Exception as error:  # noqa: BLE001 - degrade to the original bytes
            LOGGER.exception("Unexpected failure while preparing %s", key)
            self._settle(entry, TranscodeState.FAILED, source, error=str(error))

    def _discard_output(self, candidate: Path) -> bool:
        try:
            candidate.unlink()
        except FileNotFoundError:
            return False
        except OSError as error:
            LOGGER.warning("Could not remove cached transcode %s: %s", candidate, error)
            return False
        return True

    def clear(self) -> int:
        """Forget every entry and delete cached outputs; return the number removed.

        Jobs still running are marked as evicted: their output is deleted as
        soon as they finish unless the same source is requested again first.
        """

        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            settled = []
            for entry in entries:
                if entry.settled:
                    settled.append(entry)
                else:
                    entry.evicted = True
                    self._evicted[entry.source_key] = entry
        removed = 0
        for entry in settled:
            candidates = {self.output_path_for(entry.source_key)}
            if entry.output_path is not None:
                candidates.add(entry.output_path)
            removed += sum(1 for candidate in candidates if self._discard_output(candidate))
        if entries:
            LOGGER.info("Cleared %s transcode cache entries", len(entries))
        return removed


__all__ = [
    "FFmpegVideoTranscoder",
    "FFprobeVideoProber",
    "HEVC_CODEC_NAMES",
    "HEVC_CODEC_TAGS",
    "PRESET_1080P",
    "PRESET_480P",
    "PRESET_540P",
    "PRESET_720P",
    "ProbeError",
    "TRANSCODED_MIME_TYPE",
    "TranscodeCacheEntry",
    "TranscodeCoordinator",
    "TranscodeError",
    "TranscodeOutcome",
    "TranscodePreset",
    "TranscodeState",
    "VideoProber",
    "VideoTranscoder",
    "needs_transcode",
    "select_preset",
]
