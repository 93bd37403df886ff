"""Directory listings and gallery item collection with natural ordering."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from .media_types import has_images, is_media_file, is_video_file


LOGGER = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"(\d+)")

GALLERY_SORT_OPTIONS: Tuple[str, ...] = ("name", "date", "size")
LIBRARY_SORT_OPTIONS: Tuple[str, ...] = ("date", "name")


def natural_sort_key(name: str) -> Tuple[Tuple[int, object], ...]:
    """Sort key that orders embedded numbers numerically (``img2`` before ``img10``)."""

    key = []
    for token in _NUMBER_PATTERN.split(name):
        if not token:
            continue
        if token.isdigit():
            key.append((1, int(token)))
        else:
            key.append((0, token.casefold()))
    return tuple(key)


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    path: str
    is_directory: bool
    has_images: bool = False
    is_video: bool = False


@dataclass(frozen=True)
class MediaItem:
    name: str
    path: str
    modified: float
    size: int
    is_video: bool


def sort_entries(entries: Iterable[DirectoryEntry]) -> List[DirectoryEntry]:
    """Directories first, then natural order by name."""

    return sorted(entries, key=lambda entry: (not entry.is_directory, natural_sort_key(entry.name)))


def join_logical(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def list_directory(directory: Path, relative_path: str) -> List[DirectoryEntry]:
    """Return the visible entries of *directory*, sorted for display."""

    entries: List[DirectoryEntry] = []
    for child in directory.iterdir():
        if child.name.startswith("."):
            continue
        is_directory = child.is_dir()
        entries.append(
            DirectoryEntry(
                name=child.name,
                path=join_logical(relative_path, child.name),
                is_directory=is_directory,
                has_images=has_images(child) if is_directory else False,
                is_video=not is_directory and is_video_file(child.name),
            )
        )
    return sort_entries(entries)


def normalize_sort(sort: str | None, options: Sequence[str], default: str) -> str:
    value = (sort or "").strip().lower()
    return value if value in options else default


def sort_media_items(items: Iterable[MediaItem], sort: str) -> List[MediaItem]:
    """Order gallery items by ``name`` (natural), ``date`` (newest first) or ``size`` (largest first)."""

    if sort == "date":
        return sorted(items, key=lambda item: (-item.modified, natural_sort_key(item.name)))
    if sort == "size":
        return sorted(items, key=lambda item: (-item.size, natural_sort_key(item.name)))
    return sorted(items, key=lambda item: natural_sort_key(item.name))


def collect_media_items(directory: Path, relative_path: str) -> List[MediaItem]:
    items: List[MediaItem] = []
    for child in directory.iterdir():
        if child.name.startswith(".") or not child.is_file() or not is_media_file(child.name):
            continue
        try:
            stat = child.stat()
        except OSError as error:
            LOGGER.debug("Skipping unreadable gallery item %s: %s", child, error)
            continue
        items.append(
            MediaItem(
                name=child.name,
                path=join_logical(relative_path, child.name),
                modified=stat.st_mtime,
                size=stat.st_size,
                is_video=is_video_file(child.name),
            )
        )
    return items


def breadcrumb_trail(relative_path: str) -> List[Tuple[str, str]]:
    """Return ``(label, logical path)`` pairs for each component of *relative_path*."""

    trail: List[Tuple[str, str]] = []
    current = ""
    for component in (part for part in relative_path.split("/") if part):
        current = join_logical(current, component)
        trail.append((component, current))
    return trail


__all__ = [
    "DirectoryEntry",
    "GALLERY_SORT_OPTIONS",
    "LIBRARY_SORT_OPTIONS",
    "MediaItem",
    "breadcrumb_trail",
    "collect_media_items",
    "join_logical",
    "list_directory",
    "natural_sort_key",
    "normalize_sort",
    "sort_entries",
    "sort_media_items",
]
