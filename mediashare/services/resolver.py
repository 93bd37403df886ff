"""Map logical request paths and library asset ids onto concrete byte sources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Optional, Protocol

from .media_types import is_video_file, mime_type_for_path


LOGGER = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Base class for resolver failures."""


class NotFoundError(ResolutionError):
    """Raised when a path or asset does not exist in the shared source."""


class InvalidKindError(ResolutionError):
    """Raised when a directory is requested where a file is required, or vice versa."""


class ResourceKind(str, Enum):
    FILE = "file"
    DIRECTORY_ENTRY = "directoryEntry"
    LIBRARY_ASSET = "libraryAsset"


class ByteSource(Protocol):
    """Anything that can hand out a fresh seekable binary handle."""

    def open(self) -> BinaryIO:
        ...


@dataclass(frozen=True)
class FileByteSource:
    """Byte source backed by a file on disk."""

    path: Path

    def open(self) -> BinaryIO:
        return self.path.open("rb")


@dataclass(frozen=True)
class Resource:
    """A resolved, size- and MIME-typed byte sequence."""

    logical_path: str
    size: int
    mime_type: str
    kind: ResourceKind
    source: ByteSource
    location: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.logical_path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")


def normalize_logical_path(path: str) -> str:
    """Return *path* without surrounding slashes and with backslashes unified."""

    return path.replace("\\", "/").strip().strip("/")


def describe_file(
    path: Path,
    *,
    logical_path: str,
    kind: ResourceKind,
    mime_type: Optional[str] = None,
) -> Resource:
    """Build a :class:`Resource` for an existing file at *path*."""

    try:
        size = path.stat().st_size
    except FileNotFoundError as error:
        raise NotFoundError(f"'{logical_path}' does not exist") from error
    return Resource(
        logical_path=logical_path,
        size=size,
        mime_type=mime_type or mime_type_for_path(path.name),
        kind=kind,
        source=FileByteSource(path),
        location=path,
    )


class AssetLookup(Protocol):
    def get(self, asset_id: str) -> Optional[Any]:
        ...


class ResourceResolver:
    """Resolve logical paths below a shared folder root, or library asset ids."""

    def __init__(self, root: Path, *, library: Optional[AssetLookup] = None) -> None:
        self._root = root.resolve()
        self._library = library

    @property
    def root(self) -> Path:
        return self._root

    def locate(self, logical_path: str) -> Path:
        """Return the absolute location for *logical_path* inside the root.

        Paths escaping the root are reported as missing so that probing for
        files outside the share reveals nothing.
        """

        relative = normalize_logical_path(logical_path)
        if not relative:
            return self._root
        candidate = (self._root / relative).resolve()
        try:
            candidate.relative_to(self._root)
        except ValueError as error:
            LOGGER.warning("Rejected path outside the shared root: %s", logical_path)
            raise NotFoundError(f"'{logical_path}' does not exist") from error
        if not candidate.exists():
            raise NotFoundError(f"'{logical_path}' does not exist")
        return candidate

    def resolve_file(self, logical_path: str) -> Resource:
        target = self.locate(logical_path)
        if target.is_dir():
            raise InvalidKindError(f"'{logical_path}' is a directory")
        return describe_file(
            target,
            logical_path=normalize_logical_path(logical_path),
            kind=ResourceKind.FILE,
        )

    def resolve_directory(self, logical_path: str) -> Path:
        target = self.locate(logical_path)
        if not target.is_dir():
            raise InvalidKindError(f"'{logical_path}' is not a directory")
        return target

    def resolve_asset(self, asset_id: str) -> Resource:
        """Describe the original bytes of a library asset from the current snapshot."""

        if self._library is None:
            raise NotFoundError("No media library is being shared")
        asset = self._library.get(normalize_logical_path(asset_id))
        if asset is None:
            raise NotFoundError(f"Unknown asset '{asset_id}'")
        return describe_file(
            asset.path,
            logical_path=asset.name,
            kind=ResourceKind.LIBRARY_ASSET,
        )

    def is_video_path(self, logical_path: str) -> bool:
        return is_video_file(normalize_logical_path(logical_path))


__all__ = [
    "AssetLookup",
    "ByteSource",
    "FileByteSource",
    "InvalidKindError",
    "NotFoundError",
    "ResolutionError",
    "Resource",
    "ResourceKind",
    "ResourceResolver",
    "describe_file",
    "normalize_logical_path",
]
