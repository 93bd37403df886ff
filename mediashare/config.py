"""Configuration loading utilities for the Media Share server."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".mediashare_write_check"

SourceKind = Literal["folder", "library"]
SOURCE_KINDS: Tuple[str, ...] = ("folder", "library")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_VIDEO_CHUNK_BYTES = 1024 * 1024


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The helper attempts to create ``preferred`` and returns it when writable. If
    the preferred location is unavailable, each candidate in ``fallbacks`` is
    tried in order. The first writable fallback is returned along with a flag
    indicating that a fallback was used. When no candidate can be prepared the
    original ``preferred`` path is returned.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _normalize_source_kind(value: Any) -> SourceKind:
    candidate = str(value or "folder").strip().lower()
    if candidate not in SOURCE_KINDS:
        raise ValueError(
            f"Unsupported source kind '{value}'. Expected one of: {', '.join(SOURCE_KINDS)}."
        )
    return candidate  # type: ignore[return-value]


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings describing what is shared and where caches live."""

    source_root: Path
    cache_root: Path
    source_kind: SourceKind = "folder"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    video_chunk_bytes: int = DEFAULT_VIDEO_CHUNK_BYTES
    secure_mode: bool = False
    report_unknown_compatibility: bool = False
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"

    @property
    def transcode_root(self) -> Path:
        """Location of transcoded video outputs."""

        return (self.cache_root / "transcodes").resolve()

    @property
    def archive_root(self) -> Path:
        """Location used for temporary folder archives."""

        return (self.cache_root / "_archives").resolve()

    @property
    def poster_root(self) -> Path:
        """Location of poster frames extracted for library videos."""

        return (self.cache_root / "posters").resolve()

    def with_overrides(self, **overrides: Any) -> "AppConfig":
        """Return a copy with every non-``None`` value of *overrides* applied."""

        applicable = {key: value for key, value in overrides.items() if value is not None}
        if "source_root" in applicable:
            applicable["source_root"] = Path(applicable["source_root"]).expanduser().resolve()
        if "cache_root" in applicable:
            applicable["cache_root"] = Path(applicable["cache_root"]).expanduser().resolve()
        if "source_kind" in applicable:
            applicable["source_kind"] = _normalize_source_kind(applicable["source_kind"])
        if not applicable:
            return self
        return replace(self, **applicable)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        source_root = (base_path / Path(mapping.get("source_root") or ".").expanduser()).resolve()

        preferred_cache = (base_path / Path(mapping.get("cache_root") or "cache").expanduser()).resolve()
        cache_fallback = Path.home() / ".mediashare" / "cache"
        cache_root, _ = _select_writable_directory(
            preferred_cache,
            label="cache",
            fallbacks=(cache_fallback,),
        )

        chunk = int(mapping.get("video_chunk_bytes") or DEFAULT_VIDEO_CHUNK_BYTES)
        if chunk <= 0:
            LOGGER.warning("Ignoring non-positive video chunk size %s; using default.", chunk)
            chunk = DEFAULT_VIDEO_CHUNK_BYTES

        return cls(
            source_root=source_root,
            cache_root=cache_root,
            source_kind=_normalize_source_kind(mapping.get("source_kind")),
            host=str(mapping.get("host") or DEFAULT_HOST),
            port=int(mapping.get("port") or DEFAULT_PORT),
            video_chunk_bytes=chunk,
            secure_mode=_coerce_bool(mapping.get("secure_mode", False)),
            report_unknown_compatibility=_coerce_bool(
                mapping.get("report_unknown_compatibility", False)
            ),
            ffmpeg_binary=str(mapping.get("ffmpeg_binary") or "ffmpeg"),
            ffprobe_binary=str(mapping.get("ffprobe_binary") or "ffprobe"),
        )


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "SourceKind", "load_config"]
