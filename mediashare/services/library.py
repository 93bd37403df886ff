"""Directory-backed media library used when sharing in ``library`` mode."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .events import emit_file_event
from .media_types import is_image_file, is_video_file
from .naming import build_cache_name
from .video_tools import VideoToolError, extract_poster_frame


LOGGER = logging.getLogger(__name__)


class LibraryError(RuntimeError):
    """Raised when an asset exists but its bytes cannot be produced."""


@dataclass(frozen=True)
class LibraryAsset:
    """A single photo or video known to the library snapshot."""

    asset_id: str
    path: Path
    name: str
    media_type: str
    created: float
    size: int

    @property
    def is_video(self) -> bool:
        return self.media_type == "video"


class MediaLibrary(Protocol):
    """Source of library assets; ``refresh`` is the only way the snapshot changes."""

    def refresh(self) -> List[LibraryAsset]:
        ...

    def assets(self) -> List[LibraryAsset]:
        ...

    def get(self, asset_id: str) -> Optional[LibraryAsset]:
        ...

    def fetch_photo(self, asset: LibraryAsset) -> Path:
        ...

    def fetch_video(self, asset: LibraryAsset) -> Path:
        ...


def asset_id_for(relative_path: str) -> str:
    """Return the stable identifier of the asset at *relative_path*."""

    normalized = relative_path.replace("\\", "/").strip("/")
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:20]


class DirectoryMediaLibrary:
    """Treat every image and video below ``root`` as a library asset."""

    def __init__(self, root: Path, poster_root: Path, *, ffmpeg_binary: str = "ffmpeg") -> None:
        self._root = root.resolve()
        self._poster_root = poster_root
        self._ffmpeg = ffmpeg_binary
        self._lock = threading.Lock()
        self._snapshot: List[LibraryAsset] = []
        self._index: Dict[str, LibraryAsset] = {}

    @property
    def root(self) -> Path:
        return self._root

    def refresh(self) -> List[LibraryAsset]:
        """Re-enumerate the library and publish a newest-first snapshot."""

        assets: List[LibraryAsset] = []
        for directory, subdirectories, filenames in os.walk(self._root):
            subdirectories[:] = sorted(name for name in subdirectories if not name.startswith("."))
            for filename in filenames:
                if filename.startswith("."):
                    continue
                if is_video_file(filename):
                    media_type = "video"
                elif is_image_file(filename):
                    media_type = "image"
                else:
                    continue
                path = Path(directory) / filename
                try:
                    stat = path.stat()
                except OSError as error:
                    LOGGER.debug("Skipping unreadable library file %s: %s", path, error)
                    continue
                relative = path.relative_to(self._root).as_posix()
                assets.append(
                    LibraryAsset(
                        asset_id=asset_id_for(relative),
                        path=path,
                        name=filename,
                        media_type=media_type,
                        created=stat.st_mtime,
                        size=stat.st_size,
                    )
                )

        assets.sort(key=lambda asset: (-asset.created, asset.name))
        with self._lock:
            self._snapshot = assets
            self._index = {asset.asset_id: asset for asset in assets}
        LOGGER.info("Library snapshot holds %s assets from %s", len(assets), self._root)
        return list(assets)

    def assets(self) -> List[LibraryAsset]:
        with self._lock:
            return list(self._snapshot)

    def get(self, asset_id: str) -> Optional[LibraryAsset]:
        with self._lock:
            return self._index.get(asset_id)

    def fetch_photo(self, asset: LibraryAsset) -> Path:
        """Return an image file for *asset*; videos yield a cached poster frame."""

        if not asset.is_video:
            if not asset.path.exists():
                raise LibraryError(f"Asset {asset.asset_id} is no longer available")
            return asset.path

        poster = self._poster_root / build_cache_name("poster", str(asset.path), extension=".jpg")
        if poster.exists():
            return poster
        try:
            extract_poster_frame(asset.path, poster, ffmpeg=self._ffmpeg)
        except VideoToolError as error:
            raise LibraryError(f"Could not extract a poster for {asset.name}: {error}") from error
        emit_file_event(
            "Extracted poster frame",
            payload={"asset": asset.asset_id, "poster": poster},
        )
        return poster

    def fetch_video(self, asset: LibraryAsset) -> Path:
        if not asset.is_video:
            raise LibraryError(f"Asset {asset.asset_id} is not a video")
        if not asset.path.exists():
            raise LibraryError(f"Asset {asset.asset_id} is no longer available")
        return asset.path


__all__ = [
    "DirectoryMediaLibrary",
    "LibraryAsset",
    "LibraryError",
    "MediaLibrary",
    "asset_id_for",
]
